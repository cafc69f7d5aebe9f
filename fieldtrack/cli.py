"""Command-line interface for fieldtrack.

Run:
    python -m fieldtrack inspect --csv positions.csv
    python -m fieldtrack detect-events --csv positions.csv --center-lat 31.2304 --center-lon 121.4737 --radius-m 80
    python -m fieldtrack working-time --log status_log.csv
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import asdict

from fieldtrack.coordinator import FieldTaskCoordinator
from fieldtrack.csv_io import load_position_samples, load_status_log, write_events_csv
from fieldtrack.errors import FieldTrackError, UnknownTaskError
from fieldtrack.events import EventParams
from fieldtrack.models import DEFAULT_TZ, InlineCircle, Task, TaskLocationConstraint, TaskStatus
from fieldtrack.route import group_by_user, route_statistics
from fieldtrack.sinks import JsonlSink
from fieldtrack.timeutils import dt_from_epoch_ms, format_duration_ms, format_hhmmss, now_ms, parse_epoch_ms
from fieldtrack.timing import TaskTimingEngine, pause_time_ms, working_time_ms


def _cmd_inspect(args: argparse.Namespace) -> int:
    samples, summary = load_position_samples(args.csv)

    print("### CSV字段")
    print(", ".join(summary.fieldnames))
    print()

    print("### 行数")
    print(f"total_rows={summary.rows_total}, parsed={summary.rows_parsed}, skipped={summary.rows_skipped}")
    print()

    payload: dict[str, object] = {}
    for user_id, user_samples in sorted(group_by_user(samples).items()):
        stats = route_statistics(user_samples, include_mock=args.include_mock)
        mock_n = sum(1 for s in user_samples if s.is_mock)
        print(f"### 用户 {user_id}")
        if stats.start_ms is not None and stats.end_ms is not None:
            start = dt_from_epoch_ms(stats.start_ms, args.tz)
            end = dt_from_epoch_ms(stats.end_ms, args.tz)
            print(f"start={start.isoformat(sep=' ')}, end={end.isoformat(sep=' ')}")
        print(
            f"samples={stats.samples}, mock={mock_n}, distance={stats.total_distance_m:.1f}m, "
            f"time={format_hhmmss(stats.total_time_s)}, avg_speed={stats.average_speed_kmh:.2f}km/h, "
            f"stops={stats.stops}, duplicate_timestamps={stats.duplicate_timestamps}"
        )
        gaps = stats.intervals
        if gaps is not None:
            print(
                f"采样间隔（秒）：count={gaps.count}, min={gaps.min_s:.3f}, "
                f"median={gaps.median_s:.3f}, p95={gaps.p95_s:.3f}, max={gaps.max_s:.3f}"
            )
        print()
        payload[user_id] = asdict(stats)

    if args.json:
        # 方便之后做二次处理
        print(json.dumps(payload, ensure_ascii=False, indent=2))
    return 0


def _cmd_detect_events(args: argparse.Namespace) -> int:
    samples, summary = load_position_samples(args.csv)
    params = EventParams(
        exit_grace_seconds=args.exit_grace_seconds,
        exit_buffer_m=args.exit_buffer_m,
        movement_threshold_m=args.movement_threshold_m,
    )
    alert_sink = JsonlSink(args.alerts_out) if args.alerts_out else None
    if alert_sink is not None:
        alert_sink.ensure_file()
    coord = FieldTaskCoordinator(params=params, alert_sink=alert_sink)

    circle = InlineCircle(center_lat=args.center_lat, center_lon=args.center_lon, radius_m=args.radius_m)
    users = sorted({s.user_id for s in samples})
    for user_id in users:
        task_id = args.task_id or f"{user_id}-task"
        try:
            coord.timing.get(task_id)
        except UnknownTaskError:
            # --task-id: one task shared by every worker in the file
            coord.timing.register(Task(task_id=task_id, assigned_to=None if args.task_id else user_id))
        coord.generator.assign(
            user_id,
            TaskLocationConstraint(
                constraint_id=f"{task_id}-{user_id}-site",
                task_id=task_id,
                location=circle,
                arrival_required=not args.no_arrival,
                departure_required=not args.no_departure,
            ),
        )

    result = coord.ingest_batch(samples)
    n = write_events_csv(result.events, args.out, args.tz)

    print(
        f"样本：parsed={summary.rows_parsed}, rejected={result.rejected}, mock={result.mock}, "
        f"late={result.late}, recorded={result.recorded}"
    )
    counts: dict[str, int] = {}
    for e in result.events:
        counts[e.event_type.value] = counts.get(e.event_type.value, 0) + 1
    print("事件：" + (", ".join(f"{k}={v}" for k, v in sorted(counts.items())) or "无"))
    print(f"告警：{len(result.alerts)}")
    print(f"已导出：{args.out}（{n} 行）")
    if alert_sink is not None:
        print(f"告警已追加到：{alert_sink.path}")
    return 0


def _cmd_working_time(args: argparse.Namespace) -> int:
    changes, _ = load_status_log(args.log, args.tz)
    engine = TaskTimingEngine()
    rejected = 0
    for ch in changes:
        try:
            engine.get(ch.task_id)
        except UnknownTaskError:
            engine.register(Task(task_id=ch.task_id, assigned_to=ch.user_id))
        try:
            engine.request_transition(ch.task_id, ch.status, ch.at_ms, user_id=ch.user_id)
        except FieldTrackError as exc:
            rejected += 1
            print(f"跳过：{exc}", file=sys.stderr)

    now = parse_epoch_ms(args.now, args.tz) if args.now else now_ms()
    for task in sorted(engine.tasks(), key=lambda t: t.task_id):
        work = working_time_ms(task, now)
        paused = pause_time_ms(task, now)
        print(
            f"{task.task_id}: status={task.status.value}, working={format_duration_ms(work)}, "
            f"paused={format_duration_ms(paused)}, transitions={len(engine.audit_log(task.task_id))}"
        )
    if rejected:
        print(f"共有 {rejected} 条状态变更被拒绝")
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Argument parser with one subcommand per tool."""

    p = argparse.ArgumentParser(prog="fieldtrack")
    p.add_argument("--log-level", type=str, default="WARNING", help="日志级别（DEBUG/INFO/WARNING/ERROR）")
    sub = p.add_subparsers(dest="cmd", required=True)

    p_ins = sub.add_parser("inspect", help="按用户统计轨迹：时间范围/距离/速度/停留/采样间隔")
    p_ins.add_argument("--csv", type=str, default="positions.csv", help="输入CSV路径")
    p_ins.add_argument("--tz", type=str, default=DEFAULT_TZ, help="时区（IANA），默认 Asia/Shanghai")
    p_ins.add_argument("--include-mock", action="store_true", help="统计时包含模拟定位样本")
    p_ins.add_argument("--json", action="store_true", help="额外输出JSON（便于后处理）")
    p_ins.set_defaults(func=_cmd_inspect)

    p_ev = sub.add_parser("detect-events", help="用地理围栏回放定位样本，生成到达/离开事件与告警")
    p_ev.add_argument("--csv", type=str, default="positions.csv", help="输入CSV路径")
    p_ev.add_argument("--center-lat", type=float, required=True, help="任务地点中心纬度")
    p_ev.add_argument("--center-lon", type=float, required=True, help="任务地点中心经度")
    p_ev.add_argument("--radius-m", type=float, required=True, help="围栏半径（米）")
    p_ev.add_argument("--task-id", type=str, default=None, help="任务ID（默认每个用户 <userId>-task）")
    p_ev.add_argument("--no-arrival", action="store_true", help="不自动生成 arrival 事件")
    p_ev.add_argument("--no-departure", action="store_true", help="不自动生成 departure 事件")
    p_ev.add_argument(
        "--exit-grace-seconds",
        type=float,
        default=60.0,
        help="离开围栏的确认时长：连续在围栏外超过该秒数才记为离开（防GPS抖动）",
    )
    p_ev.add_argument(
        "--exit-buffer-m",
        type=float,
        default=0.0,
        help="已在围栏内时，需超出 半径+该值 才算在外（进入/离开使用不同阈值）",
    )
    p_ev.add_argument(
        "--movement-threshold-m",
        type=float,
        default=10.0,
        help="轨迹记录的最小移动距离（米），小于该值的样本不写入移动历史",
    )
    p_ev.add_argument("--tz", type=str, default=DEFAULT_TZ, help="时区（IANA）")
    p_ev.add_argument("--out", type=str, default="events.csv", help="输出 events.csv 路径")
    p_ev.add_argument("--alerts-out", type=str, default=None, help="告警追加写入的 JSONL 路径（可选）")
    p_ev.set_defaults(func=_cmd_detect_events)

    p_wt = sub.add_parser("working-time", help="回放任务状态日志，计算扣除暂停后的工作时长")
    p_wt.add_argument("--log", type=str, default="status_log.csv", help="状态日志CSV（taskId,status,time[,userId]）")
    p_wt.add_argument("--tz", type=str, default=DEFAULT_TZ, help="时区（IANA）")
    p_wt.add_argument(
        "--now",
        type=str,
        default=None,
        help="计算未完成任务时使用的“当前时间”（例如 2025-12-01 18:00:00；默认系统时间）",
    )
    p_wt.set_defaults(func=_cmd_working_time)

    return p


def main(argv: list[str] | None = None) -> int:
    """Entry point of the `fieldtrack` console script."""

    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
