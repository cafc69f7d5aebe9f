"""Write a synthetic positions.csv: a few workers walking to one site, staying, and leaving.

No real location data is involved, so the file is safe to commit and share.

    python scripts/generate_sample_positions_csv.py --workers 3 --out sample_data/positions.csv
"""

from __future__ import annotations

import argparse
import csv
import math
import random
from datetime import datetime, timedelta
from pathlib import Path
from typing import Final, Iterator

from zoneinfo import ZoneInfo

SITE_TZ: Final[str] = "Asia/Shanghai"
SITE_LAT: Final[float] = 31.2304
SITE_LON: Final[float] = 121.4737
M_PER_DEG: Final[float] = 111_320.0

COLUMNS: Final[tuple[str, ...]] = (
    "userId",
    "geoTime",
    "latitude",
    "longitude",
    "altitude",
    "speed",
    "course",
    "horizontalAccuracy",
    "source",
    "batteryLevel",
    "isMock",
    "taskId",
)


def _shift(north_m: float, east_m: float) -> tuple[float, float]:
    # flat-earth approximation, fine for a few hundred meters
    return (
        SITE_LAT + north_m / M_PER_DEG,
        SITE_LON + east_m / (M_PER_DEG * math.cos(math.radians(SITE_LAT))),
    )


def _visit_legs(rng: random.Random) -> Iterator[tuple[float, int]]:
    """(distance from site in m, seconds since previous fix) for one visit."""

    for i in range(10):
        yield 600 - 60 * i, 90
    for _ in range(rng.randint(10, 30)):
        yield rng.uniform(0, 40), rng.randint(60, 300)
    for i in range(10):
        yield 60 + 60 * i, 90


def worker_rows(
    worker_no: int,
    *,
    rng: random.Random,
    start: datetime,
    visits: int,
    mock_ratio: float,
) -> Iterator[list[str]]:
    user_id = f"worker-{worker_no:02d}"
    clock = start + timedelta(minutes=rng.uniform(0, 30))
    battery = rng.uniform(60, 100)
    for visit_no in range(visits):
        task_id = f"{user_id}-visit-{visit_no + 1}"
        heading = rng.uniform(0, 2 * math.pi)
        for dist_m, step_s in _visit_legs(rng):
            clock += timedelta(seconds=step_s)
            dist_m += rng.uniform(-8, 8)
            lat, lon = _shift(dist_m * math.cos(heading), dist_m * math.sin(heading))
            battery = max(5.0, battery - rng.uniform(0, 0.3))
            moving = dist_m >= 50
            yield [
                user_id,
                str(int(clock.timestamp() * 1000)),
                f"{lat:.7f}",
                f"{lon:.7f}",
                f"{rng.uniform(0, 30):.1f}",
                f"{rng.uniform(0.8, 1.6) if moving else 0.0:.1f}",
                f"{math.degrees(heading) % 360:.1f}",
                f"{rng.choice((3.0, 5.0, 8.0, 12.0, 20.0)):.1f}",
                rng.choice(("gps", "gps", "gps", "network")),
                f"{battery:.0f}",
                "1" if rng.random() < mock_ratio else "0",
                task_id,
            ]
        clock += timedelta(minutes=rng.uniform(30, 120))


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="生成示例 positions.csv（随机数据，不含真实位置）")
    parser.add_argument("--out", default="sample_data/positions.csv", help="输出路径")
    parser.add_argument("--workers", type=int, default=3, help="外勤人员数量")
    parser.add_argument("--visits", type=int, default=2, help="每人到访任务地点的次数")
    parser.add_argument("--seed", type=int, default=42, help="随机种子（结果可复现）")
    parser.add_argument("--mock-ratio", type=float, default=0.02, help="模拟定位样本的比例")
    parser.add_argument("--start", default="2025-01-01 08:00:00", help=f"开始时间（{SITE_TZ} 本地时间）")
    args = parser.parse_args(argv)

    rng = random.Random(args.seed)
    start = datetime.fromisoformat(args.start).replace(tzinfo=ZoneInfo(SITE_TZ))
    rows = [
        row
        for n in range(1, args.workers + 1)
        for row in worker_rows(n, rng=rng, start=start, visits=args.visits, mock_ratio=args.mock_ratio)
    ]
    rows.sort(key=lambda r: int(r[1]))

    out = Path(args.out)
    out.parent.mkdir(parents=True, exist_ok=True)
    with out.open("w", encoding="utf-8", newline="") as f:
        writer = csv.writer(f)
        writer.writerow(COLUMNS)
        writer.writerows(rows)

    print(f"已生成：{out}（{len(rows)} 行，seed={args.seed}，地点={SITE_LAT},{SITE_LON}）")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
