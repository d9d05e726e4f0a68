from collections.abc import Sequence

from habitgrid.core.models import DayCount, Habit, HabitScore, Snapshot

from .ansi import bold, cyan, dim, gold, gray, green, muted, white
from .dates import day_key, group_weeks, weekday_label

__all__ = [
    "format_habit",
    "render_dashboard",
    "render_month_matrix",
    "render_stats",
    "render_top_habits",
    "render_weekly",
]

_NAME_WIDTH = 15
_BAR_WIDTH = 20


def format_habit(habit: Habit, checked: bool = False, show_id: bool = False) -> str:
    """Format a habit for display. Returns: [✓|□] [icon] name [id]"""
    parts = [muted("✓") if checked else "□"]
    if habit.icon:
        parts.append(habit.icon)
    parts.append(gray(habit.name.lower()) if checked else habit.name.lower())
    if show_id:
        parts.append(muted(f"[{habit.id[:8]}]"))
    return " ".join(parts)


def _bar(value: int, top: int, width: int = _BAR_WIDTH) -> str:
    if top <= 0 or value <= 0:
        return ""
    return "█" * max(1, round(value / top * width))


def _name_cell(habit: Habit) -> str:
    name = habit.name.lower()
    if len(name) > _NAME_WIDTH:
        name = name[: _NAME_WIDTH - 1] + "…"
    return f"{name:<{_NAME_WIDTH}}"


def render_weekly(series: Sequence[DayCount]) -> str:
    peak = max((d.completed for d in series), default=0)
    lines = []
    for d in series:
        label = weekday_label(d.day).lower()
        lines.append(f"  {label} {cyan(f'{_bar(d.completed, peak, 10):<10}')} {d.completed}")
    return "\n".join(lines)


def render_top_habits(scores: Sequence[HabitScore]) -> str:
    if not scores:
        return "  no habits yet"
    lines = []
    for rank, s in enumerate(scores, start=1):
        bar = green(_bar(s.score, 100))
        lines.append(f"  {rank:>2}. {_name_cell(s.habit)} {s.score:>3}% {bar}")
    return "\n".join(lines)


def render_dashboard(snapshot: Snapshot) -> str:
    day = snapshot.view_day
    lines = [
        f"{bold(white(day.strftime('%A').upper()))} {dim(day.strftime('%B %d, %Y'))}",
        f"{gold('streak:')} {snapshot.streak}d   "
        f"{gold('month:')} {snapshot.progress.completed}/{snapshot.progress.total} "
        f"({snapshot.progress.percent}%)",
        "",
    ]

    if not snapshot.habits:
        lines.append("no habits yet. add one with: habitgrid add <name>")
        return "\n".join(lines) + "\n"

    if not snapshot.checklist:
        lines.append("nothing due")
    unchecked = [h for h, done in snapshot.checklist if not done]
    checked = [h for h, done in snapshot.checklist if done]
    lines.extend(format_habit(h, show_id=True) for h in unchecked)
    lines.extend(format_habit(h, checked=True, show_id=True) for h in checked)

    lines.append("")
    lines.append(bold(white("LAST 7 DAYS:")))
    lines.append(render_weekly(snapshot.weekly))
    return "\n".join(lines) + "\n"


def _cell_symbol(snapshot: Snapshot, habit: Habit, day) -> str:
    cell = snapshot.grid[(habit.id, day_key(day))]
    if cell.completed:
        return green("✓")
    if not cell.due:
        return muted("-")
    if day > snapshot.today:
        return muted("·")
    return "□"


def render_month_matrix(snapshot: Snapshot) -> str:
    title = snapshot.view_day.strftime("%B %Y").upper()
    if not snapshot.habits:
        return f"{title}\n\nNo habits found."

    lines = [bold(white(title))]
    for index, week in enumerate(group_weeks(snapshot.days), start=1):
        span = f"{week[0].strftime('%b %d')} - {week[-1].strftime('%b %d')}".lower()
        lines.append("")
        lines.append(f"week {index} {dim(f'({span})')}")
        labels = [weekday_label(d).lower() for d in week]
        header = f"{'habit':<{_NAME_WIDTH}} " + " ".join(f"{label:<3}" for label in labels)
        lines.append(header)
        lines.append("-" * len(header))
        for habit in snapshot.habits:
            cells = " ".join(f"{_cell_symbol(snapshot, habit, d)}  " for d in week)
            lines.append(f"{_name_cell(habit)} {cells.rstrip()}   {muted(f'[{habit.id[:8]}]')}")
    return "\n".join(lines)


def render_stats(snapshot: Snapshot) -> str:
    month = snapshot.view_day.strftime("%B %Y").lower()
    lines = [
        bold(white(f"STATS ({month}):")),
        f"  efficiency: {snapshot.efficiency}%",
        f"  this month: {snapshot.progress.completed}/{snapshot.progress.total} ({snapshot.progress.percent}%)",
        f"  streak:     {snapshot.streak}d",
        "",
        bold(white("TOP HABITS:")),
        render_top_habits(snapshot.top),
        "",
        bold(white("LAST 7 DAYS:")),
        render_weekly(snapshot.weekly),
    ]
    return "\n".join(lines)
