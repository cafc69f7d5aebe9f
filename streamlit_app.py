from __future__ import annotations

from pathlib import Path

import streamlit as st

from fieldtrack.coordinator import FieldTaskCoordinator, IngestSummary
from fieldtrack.csv_io import load_position_samples
from fieldtrack.events import EventParams
from fieldtrack.models import DEFAULT_TZ, InlineCircle, PositionSample, Task, TaskLocationConstraint
from fieldtrack.route import group_by_user, route_statistics
from fieldtrack.timeutils import dt_from_epoch_ms, format_hhmmss


@st.cache_data(show_spinner=False)
def _load_samples(path_csv: str, mtime: float) -> list[PositionSample]:
    del mtime  # cache key only: a rewritten CSV gets re-parsed
    samples, _summary = load_position_samples(path_csv)
    return samples


def _replay(
    samples: list[PositionSample],
    circle: InlineCircle,
    params: EventParams,
    arrival_required: bool,
    departure_required: bool,
) -> IngestSummary:
    coord = FieldTaskCoordinator(params=params)
    for user_id in sorted({s.user_id for s in samples}):
        task_id = f"{user_id}-task"
        coord.timing.register(Task(task_id=task_id, assigned_to=user_id))
        coord.generator.assign(
            user_id,
            TaskLocationConstraint(
                constraint_id=f"{task_id}-site",
                task_id=task_id,
                location=circle,
                arrival_required=arrival_required,
                departure_required=departure_required,
            ),
        )
    return coord.ingest_batch(samples)


def main() -> None:
    st.set_page_config(page_title="外勤任务：围栏事件回放", layout="wide")
    st.title("外勤任务：按任务地点回放到达/离开事件")

    with st.sidebar:
        st.subheader("数据与时区")
        tz_name = st.text_input("时区（IANA）", value=DEFAULT_TZ)
        path_csv = st.text_input("positions.csv 路径", value="positions.csv")

        st.subheader("任务地点围栏")
        center_lat = st.number_input("中心纬度 center_lat", value=31.2304000, format="%.7f")
        center_lon = st.number_input("中心经度 center_lon", value=121.4737000, format="%.7f")
        radius_m = st.number_input("半径 radius_m（米）", value=80.0, step=5.0, min_value=1.0)
        arrival_required = st.checkbox("自动生成到达事件", value=True)
        departure_required = st.checkbox("自动生成离开事件", value=True)

        with st.expander("高级参数（通常不用改）", expanded=False):
            exit_grace_seconds = st.number_input("exit_grace_seconds（默认 60s）", value=60.0, step=10.0)
            exit_buffer_m = st.number_input("exit_buffer_m（默认 0m）", value=0.0, step=5.0)
            movement_threshold_m = st.number_input("movement_threshold_m（默认 10m）", value=10.0, step=1.0)

    p = Path(path_csv)
    if not p.exists():
        st.error(f"找不到文件：{path_csv!r}。可以先运行 scripts/generate_sample_positions_csv.py 生成示例数据。")
        return

    try:
        samples = _load_samples(path_csv, p.stat().st_mtime)
        circle = InlineCircle(center_lat=float(center_lat), center_lon=float(center_lon), radius_m=float(radius_m))
        params = EventParams(
            exit_grace_seconds=float(exit_grace_seconds),
            exit_buffer_m=float(exit_buffer_m),
            movement_threshold_m=float(movement_threshold_m),
        )
        with st.spinner("正在回放定位样本 ..."):
            result = _replay(samples, circle, params, arrival_required, departure_required)
    except Exception as exc:
        st.exception(exc)
        return

    st.subheader("汇总")
    c1, c2, c3, c4 = st.columns(4)
    c1.metric("样本数", str(result.samples))
    c2.metric("无效样本", str(result.rejected))
    c3.metric("模拟定位（不参与判断）", str(result.mock))
    c4.metric("事件 / 告警", f"{len(result.events)} / {len(result.alerts)}")

    st.subheader("事件")
    event_rows = [
        {
            "time_local": dt_from_epoch_ms(e.at_ms, tz_name).isoformat(sep=" "),
            "event_type": e.event_type.value,
            "user_id": e.user_id,
            "task_id": e.task_id,
            "latitude": e.latitude,
            "longitude": e.longitude,
        }
        for e in result.events
    ]
    st.dataframe(event_rows, use_container_width=True, height=360)

    st.subheader("告警")
    alert_rows = [
        {
            "time_local": dt_from_epoch_ms(a.created_at_ms, tz_name).isoformat(sep=" "),
            "priority": a.priority.value,
            "alert_type": a.alert_type.value,
            "title": a.title,
            "user_id": a.user_id,
        }
        for a in result.alerts
    ]
    st.dataframe(alert_rows, use_container_width=True, height=240)

    with st.expander("按用户轨迹统计", expanded=False):
        route_rows = []
        for user_id, user_samples in sorted(group_by_user(samples).items()):
            stats = route_statistics(user_samples)
            route_rows.append(
                {
                    "user_id": user_id,
                    "samples": stats.samples,
                    "distance_m": round(stats.total_distance_m, 1),
                    "time": format_hhmmss(stats.total_time_s),
                    "avg_speed_kmh": round(stats.average_speed_kmh, 2),
                    "stops": stats.stops,
                }
            )
        st.dataframe(route_rows, use_container_width=True)

    st.caption("说明：模拟定位（isMock）样本只写入移动历史，不会触发到达/离开；离开需在围栏外持续 exit_grace_seconds 才确认。")


if __name__ == "__main__":
    main()
