"""
Vesting Calculator

Pure functions deriving vested and releasable amounts, status, next release
date and progress from a schedule and the current time. Nothing here reads
the clock or touches storage.

The vested curve runs from start_time over the full duration; the cliff only
gates it. Progress, by contrast, is measured from the cliff end. The two
curves intentionally differ.
"""

from typing import Optional

from .schedules import VestingSchedule, ScheduleStatus


def get_vested_amount(schedule: VestingSchedule, now: int) -> int:
    """
    Cumulative amount vested at `now`

    Revoked schedules are evaluated at their revocation time, so the result
    stays constant after revocation.
    """
    now = schedule.effective_time(now)

    if now < schedule.cliff_end:
        return 0
    if now >= schedule.end_time:
        return schedule.total_amount

    return schedule.total_amount * (now - schedule.start_time) // schedule.duration


def get_releasable_amount(schedule: VestingSchedule, now: int) -> int:
    """Vested but not yet released, never negative"""
    return max(get_vested_amount(schedule, now) - schedule.released, 0)


def get_forfeited_amount(schedule: VestingSchedule) -> int:
    """Principal that will never vest because the schedule was revoked"""
    if not schedule.revoked or schedule.revoked_at is None:
        return 0
    return schedule.total_amount - get_vested_amount(schedule, schedule.revoked_at)


def get_status(schedule: VestingSchedule, now: int) -> ScheduleStatus:
    if schedule.revoked:
        return ScheduleStatus.REVOKED
    if now < schedule.cliff_end:
        return ScheduleStatus.PENDING
    if now >= schedule.end_time:
        return ScheduleStatus.COMPLETED
    return ScheduleStatus.ACTIVE


def get_next_release_date(schedule: VestingSchedule, now: int) -> Optional[int]:
    """
    Next informative timestamp on the curve

    Before the cliff that is the cliff end; while vesting it is full vest;
    once fully vested there is none.
    """
    if now < schedule.cliff_end:
        return schedule.cliff_end
    if now >= schedule.end_time:
        return None
    return schedule.end_time


def calculate_progress(schedule: VestingSchedule, now: int) -> int:
    """Whole-number percentage of the post-cliff window elapsed"""
    cliff_end = schedule.cliff_end
    if now < cliff_end:
        return 0

    vesting_end = schedule.end_time
    if now >= vesting_end:
        return 100

    return (now - cliff_end) * 100 // (vesting_end - cliff_end)
