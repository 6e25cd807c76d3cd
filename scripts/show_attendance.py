import argparse
import asyncio
import sys
import os
import logging

script_dir = os.path.dirname(os.path.abspath(__file__))
if os.path.basename(script_dir) == 'scripts':
    project_root = os.path.dirname(script_dir)
else:
    project_root = script_dir

sys.path.append(project_root)

# Keep SQLAlchemy quiet, the table is the output
logging.basicConfig(level=logging.CRITICAL)
logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
logging.getLogger("sqlalchemy.pool").setLevel(logging.WARNING)

from attendance_kiosk.config import settings
from attendance_kiosk.database import AsyncSessionLocal, engine
from attendance_kiosk.exceptions import PersistenceError
from attendance_kiosk.schemas.attendance import AttendanceType, HistoryFilter
from attendance_kiosk.services.store import AttendanceRecordStore
from attendance_kiosk.services.workflow import derive_status, local_day, local_now, records_on


async def show_attendance(kind: HistoryFilter):
    print("\n" + "="*95)
    print(f" {'ID':<5} | {'Date':<12} | {'Time':<10} | {'Type':<10} | {'Location':<24} | {'Method':<10} | Photo")
    print("="*95)

    store = AttendanceRecordStore(AsyncSessionLocal)
    try:
        records = await store.list_all()
    except PersistenceError as e:
        print(f"\n[!] Error fetching data: {e}")
        print(f"    Hint: check DATABASE_URL ({settings.DATABASE_URL}).")
        await engine.dispose()
        return

    shown = records
    if kind != HistoryFilter.ALL:
        shown = [r for r in records if r.type == AttendanceType(kind.value)]
    shown = sorted(shown, key=lambda r: r.timestamp, reverse=True)[: settings.HISTORY_LIMIT]

    if not shown:
        print(f" {'No records found.':<90}")
    for record in shown:
        moment = record.timestamp.astimezone()
        where = f"{record.location.latitude:.6f}, {record.location.longitude:.6f}"
        photo = "yes" if record.snapshot_image else "-"
        print(
            f" {record.id:<5} | {str(moment.date()):<12} | {moment.strftime('%H:%M:%S'):<10} | "
            f"{record.type.value:<10} | {where:<24} | {record.detection_method.value:<10} | {photo}"
        )

    today = local_day(local_now())
    todays = records_on(records, today)
    check_ins = [r.timestamp for r in todays if r.type == AttendanceType.CHECK_IN]
    check_outs = [r.timestamp for r in todays if r.type == AttendanceType.CHECK_OUT]
    first_in = min(check_ins).astimezone().strftime("%H:%M") if check_ins else "-"
    last_out = max(check_outs).astimezone().strftime("%H:%M") if check_outs else "-"

    print("="*95)
    print(f" Today {today}: status={derive_status(records, today).value}  in={first_in}  out={last_out}")
    print("="*95 + "\n")
    await engine.dispose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Print the attendance history.")
    parser.add_argument(
        "--filter",
        choices=[f.value for f in HistoryFilter],
        default=HistoryFilter.ALL.value,
    )
    args = parser.parse_args()
    try:
        asyncio.run(show_attendance(HistoryFilter(args.filter)))
    except KeyboardInterrupt:
        pass
