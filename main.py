"""
WeekWise — Entry Point.

`python main.py` runs the weekly-plan expiry sweep once. Schedule it with
cron (e.g. hourly) so plans nobody finished voting on move to `expired`.
"""

import logging
from datetime import datetime
from zoneinfo import ZoneInfo

from weekwise.config import settings

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

from weekwise.core.weekly_plan import expire_stale_plans
from weekwise.data.db import WeeklyPlanDB

logger = logging.getLogger(__name__)


def main() -> None:
    now = datetime.now(ZoneInfo(settings.TIMEZONE)).replace(tzinfo=None)
    expired = expire_stale_plans(WeeklyPlanDB(), now)
    logger.info("Expiry sweep done, %d plan(s) expired", len(expired))


if __name__ == "__main__":
    main()
