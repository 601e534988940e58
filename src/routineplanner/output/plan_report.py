"""Plain-text report for assignment plans.

This module renders a previewed plan for review before publishing:
- Per-date suggestions and overrides
- Assignment counts and points per member
- Fairness metrics of the plan as it stands
"""

from collections import defaultdict
from pathlib import Path
from typing import Iterable, Optional, Union

from routineplanner.domain.models import AssignmentPlan, Member, PublishResult, ScheduleDefinition


class PlanReportGenerator:
    """Generates text reports for assignment plans."""

    def generate(
        self,
        schedule: ScheduleDefinition,
        plan: AssignmentPlan,
        output_path: Union[str, Path],
        members: Optional[Iterable[Member]] = None,
        result: Optional[PublishResult] = None,
    ) -> str:
        """Generate the report and save it to a file.

        Args:
            schedule: Schedule the plan belongs to.
            plan: The plan to render.
            output_path: Path to save the text file.
            members: Members, for display names.
            result: Publish outcome to append, if the plan was published.

        Returns:
            The generated text content.
        """
        content = self._generate_content(schedule, plan, members, result)
        Path(output_path).write_text(content)
        return content

    def generate_to_string(
        self,
        schedule: ScheduleDefinition,
        plan: AssignmentPlan,
        members: Optional[Iterable[Member]] = None,
        result: Optional[PublishResult] = None,
    ) -> str:
        return self._generate_content(schedule, plan, members, result)

    def _generate_content(
        self,
        schedule: ScheduleDefinition,
        plan: AssignmentPlan,
        members: Optional[Iterable[Member]],
        result: Optional[PublishResult],
    ) -> str:
        names = {m.id: m.display_name for m in members or ()}
        lines = []

        # Header
        lines.append("=" * 72)
        title = schedule.name or schedule.template_id
        lines.append(f"ROUTINE PLAN - {title}")
        lines.append("=" * 72)
        lines.append("")
        lines.append(f"Stable: {schedule.stable_id}")
        lines.append(f"Range: {schedule.start_date.isoformat()} - {schedule.end_date.isoformat()}")
        lines.append(f"Pattern: {schedule.repeat_pattern.value}")
        lines.append(f"Start time: {schedule.scheduled_start_time.strftime('%H:%M')}")
        lines.append(f"Assignment: {plan.mode.value}")
        lines.append(f"Points per instance: {plan.points_value}")
        lines.append(f"Dates: {len(plan.entries)}")
        lines.append("")

        # Per-date view
        lines.append("-" * 72)
        lines.append("DATES")
        lines.append("-" * 72)
        lines.append(f"{'Date':<12} {'Day':<4} {'Assignee':<24} {'Points':>6}  Notes")
        lines.append("-" * 72)
        for entry in plan.entries:
            assignee = entry.effective_assignee
            label = names.get(assignee, assignee) if assignee else "(open)"
            notes = []
            if entry.is_holiday:
                notes.append("holiday")
            if entry.overridden:
                suggested = entry.suggested_assignee or "(open)"
                notes.append(f"override, suggested {names.get(suggested, suggested)}")
            lines.append(
                f"{entry.date.isoformat():<12} {entry.date.strftime('%a'):<4} "
                f"{label[:24]:<24} {entry.points:>6}  {', '.join(notes)}"
            )
        lines.append("")

        # Per-member totals
        lines.append("-" * 72)
        lines.append("MEMBER TOTALS")
        lines.append("-" * 72)
        counts: dict[str, int] = defaultdict(int)
        planned: dict[str, int] = defaultdict(int)
        for entry in plan.entries:
            if entry.effective_assignee:
                counts[entry.effective_assignee] += 1
                planned[entry.effective_assignee] += entry.points

        member_ids = sorted(set(plan.baseline_scores) | set(counts))
        if member_ids:
            lines.append(f"{'Member':<24} {'History':>8} {'Planned':>8} {'Total':>8} {'Dates':>6}")
            for member_id in member_ids:
                history = plan.baseline_scores.get(member_id, 0)
                label = names.get(member_id, member_id)[:24]
                lines.append(
                    f"{label:<24} {history:>8} {planned[member_id]:>8} "
                    f"{history + planned[member_id]:>8} {counts[member_id]:>6}"
                )
        else:
            lines.append("No members")
        open_dates = sum(1 for e in plan.entries if e.effective_assignee is None)
        lines.append(f"\nOpen dates: {open_dates}")
        lines.append("")

        # Fairness
        metrics = plan.fairness_metrics()
        lines.append("-" * 72)
        lines.append("FAIRNESS")
        lines.append("-" * 72)
        lines.append(f"Average points: {metrics.avg_points:.1f}")
        lines.append(f"Std deviation: {metrics.points_std_dev:.2f}")
        lines.append(f"Range: {metrics.min_points} - {metrics.max_points}")
        lines.append(f"Fairness score: {metrics.fairness_score:.1f}/100")
        lines.append("")

        if result is not None:
            lines.append("-" * 72)
            lines.append("PUBLISH RESULT")
            lines.append("-" * 72)
            lines.append(f"Created: {result.created_count}")
            lines.append(f"Skipped: {result.skipped_count}")
            for failed_date, message in sorted(result.failed_dates.items()):
                lines.append(f"Failed {failed_date.isoformat()}: {message}")
            lines.append("")

        lines.append("=" * 72)
        lines.append("END OF PLAN")
        lines.append("=" * 72)

        return "\n".join(lines)
