"""Command-line interface for the routine planner."""

import argparse
import json
import logging
import sys
from datetime import date, time, timedelta
from pathlib import Path
from typing import Optional

from routineplanner.audit.dispatcher import InMemoryAuditSink
from routineplanner.domain.config import PlannerStrategy, SchedulerConfig
from routineplanner.domain.errors import DomainError
from routineplanner.domain.models import (
    Member,
    RoutineInstance,
    RoutineTemplate,
    ScheduleDefinition,
    Weekday,
    make_repeat_rule,
    parse_date,
)
from routineplanner.domain.policies import (
    Permission,
    StaticHolidayCalendar,
    StaticMembershipDirectory,
    StaticPermissionChecker,
    StaticTemplateCatalog,
)
from routineplanner.output.plan_report import PlanReportGenerator
from routineplanner.scheduling.lifecycle import LifecycleAction
from routineplanner.scheduling.recurrence import RecurrenceExpander
from routineplanner.scheduling.scheduler import RoutineScheduler

logger = logging.getLogger(__name__)

DEMO_ORG = "org-demo"
DEMO_STABLE = "stable-demo"
DEMO_MANAGER = "manager"

STRATEGY_HELP = (
    "Planner strategy (overrides the config file). 'greedy' always gives a date "
    "to the lowest-scoring eligible member; 'balanced' optimizes the whole range "
    "with CP-SAT and may depart from that rotation order"
)

def load_config(path: Optional[str]) -> SchedulerConfig:
    if not path:
        return SchedulerConfig()
    return SchedulerConfig.from_dict(json.loads(Path(path).read_text()))


def create_sample_members(count: int = 4) -> list[Member]:
    """Create sample members with varied availability.

    Args:
        count: Number of members to create.
    """
    names = [
        "Alice", "Bob", "Carol", "David", "Eve", "Frank", "Grace", "Henry",
        "Ivy", "Jack", "Kate", "Leo",
    ]
    members = []
    for i in range(count):
        name = names[i % len(names)]
        if i >= len(names):
            name = f"{name}{i // len(names) + 1}"

        unavailable = set()
        preferred = set()
        if i % 3 == 1:
            unavailable.add(Weekday.SUNDAY)
        if i % 4 == 2:
            preferred.add(Weekday.SATURDAY)

        members.append(
            Member(
                id=f"M{i + 1:03d}",
                display_name=name,
                unavailable_weekdays=frozenset(unavailable),
                preferred_weekdays=frozenset(preferred),
                max_per_week=3 if i % 5 == 4 else None,
            )
        )
    return members


def run_expand(
    start: str,
    end: str,
    pattern: str,
    days: Optional[str],
    include_holidays: bool,
    holidays: list[str],
) -> int:
    """Print the qualifying dates of a recurrence rule."""
    repeat_days = [int(d) for d in days.split(",") if d.strip()] if days else None
    if repeat_days is None and pattern in ("weekends", "holidays"):
        repeat_days = [Weekday.SATURDAY, Weekday.SUNDAY]
    rule = make_repeat_rule(pattern, repeat_days, include_holidays)

    calendar = StaticHolidayCalendar()
    calendar.add("default", *(parse_date(h) for h in holidays))
    dates = RecurrenceExpander(calendar).expand(parse_date(start), parse_date(end), rule)

    for d in dates:
        marker = " (holiday)" if calendar.is_holiday(d, "default") else ""
        print(f"{d.isoformat()} {d.strftime('%a')}{marker}")
    print(f"\n{len(dates)} dates")
    return 0


def run_preview(
    input_path: str,
    config: SchedulerConfig,
    as_of: Optional[str],
    output_path: Optional[str],
) -> int:
    """Plan a schedule described in a JSON file and print the report.

    The file holds ``schedule`` (a schedule definition), ``template``,
    ``members``, and optionally ``holidays`` and completed ``history``.
    """
    data = json.loads(Path(input_path).read_text())
    schedule = ScheduleDefinition.from_dict(data["schedule"])

    template_data = data["template"]
    template = RoutineTemplate(
        id=template_data.get("id", schedule.template_id),
        name=template_data.get("name", schedule.template_id),
        points_value=template_data.get("points_value", 1),
        step_ids=list(template_data.get("step_ids", [])),
    )
    members = [
        Member(
            id=m["id"],
            display_name=m.get("display_name", ""),
            unavailable_weekdays=frozenset(m.get("unavailable_weekdays", [])),
            preferred_weekdays=frozenset(m.get("preferred_weekdays", [])),
            max_per_week=m.get("max_per_week"),
            max_per_month=m.get("max_per_month"),
        )
        for m in data.get("members", [])
    ]

    permissions = StaticPermissionChecker()
    membership = StaticMembershipDirectory()
    membership.add(schedule.organization_id, schedule.stable_id, *members)
    catalog = StaticTemplateCatalog()
    catalog.add(template)
    calendar = StaticHolidayCalendar()
    calendar.add(schedule.holiday_locale, *(parse_date(h) for h in data.get("holidays", [])))

    scheduler = RoutineScheduler(permissions, membership, catalog, calendar, config=config)
    try:
        for item in data.get("history", []):
            scheduler.instances.create(RoutineInstance.from_dict(item))

        plan = scheduler.preview_schedule(schedule, parse_date(as_of) if as_of else None)
    finally:
        scheduler.close()

    generator = PlanReportGenerator()
    if output_path:
        report = generator.generate(schedule, plan, output_path, members)
        print(f"Report written to {output_path}")
    else:
        report = generator.generate_to_string(schedule, plan, members)
        print(report)
    return 0


def run_demo(member_count: int = 4, days: int = 14, config: Optional[SchedulerConfig] = None) -> int:
    """Run an end-to-end demo on in-memory collaborators."""
    config = config or SchedulerConfig()
    members = create_sample_members(member_count)
    start = date.today() + timedelta(days=1)
    end = start + timedelta(days=days - 1)
    print(f"Planning daily stable check for {member_count} members, {start} - {end}...")

    permissions = StaticPermissionChecker()
    permissions.grant(DEMO_MANAGER, DEMO_ORG, Permission.MANAGE_SCHEDULES)
    membership = StaticMembershipDirectory()
    membership.add(DEMO_ORG, DEMO_STABLE, *members)
    catalog = StaticTemplateCatalog()
    catalog.add(
        RoutineTemplate(
            id="tpl-evening-check",
            name="Evening stable check",
            points_value=5,
            step_ids=["water", "hay", "blankets"],
            default_start_time=time(18, 0),
        )
    )
    calendar = StaticHolidayCalendar()
    calendar.add("default", start + timedelta(days=3))

    audit_sink = InMemoryAuditSink()
    scheduler = RoutineScheduler(
        permissions, membership, catalog, calendar, config=config, audit_sink=audit_sink
    )
    try:
        schedule_id = scheduler.create_schedule(
            {
                "organization_id": DEMO_ORG,
                "stable_id": DEMO_STABLE,
                "template_id": "tpl-evening-check",
                "name": "Evening check",
                "start_date": start.isoformat(),
                "end_date": end.isoformat(),
                "repeat_pattern": "daily",
                "scheduled_start_time": "18:00",
                "assignment_mode": "auto",
            },
            actor_id=DEMO_MANAGER,
        )
        schedule = scheduler.get_schedule(schedule_id)
        plan = scheduler.preview_schedule(schedule)
        plan.override(start, members[-1].id)

        print(PlanReportGenerator().generate_to_string(schedule, plan, members))

        first = scheduler.publish_schedule(schedule_id, plan, actor_id=DEMO_MANAGER)
        again = scheduler.publish_schedule(schedule_id, plan, actor_id=DEMO_MANAGER)
        print(f"\nFirst publish: created={first.created_count} skipped={first.skipped_count}")
        print(f"Second publish: created={again.created_count} skipped={again.skipped_count}")

        instance = scheduler.get_instance(first.instance_ids[0])
        assignee = instance.assigned_to
        scheduler.transition(instance.id, LifecycleAction.START, assignee)
        for step_id in ("water", "hay", "blankets"):
            scheduler.transition(instance.id, LifecycleAction.PROGRESS, assignee, step_id=step_id)
        done = scheduler.transition(instance.id, LifecycleAction.COMPLETE, assignee)
        print(f"\n{done.scheduled_date}: completed by {done.completed_by}, "
              f"{done.points_awarded} points")

        second = scheduler.get_instance(first.instance_ids[1])
        scheduler.transition(
            second.id, LifecycleAction.REASSIGN, DEMO_MANAGER, new_assignee=members[0].id
        )
        scheduler.transition(second.id, LifecycleAction.CANCEL, DEMO_MANAGER, reason="Vet visit")
        print(f"{second.scheduled_date}: reassigned to {members[0].display_name}, then cancelled")
    finally:
        scheduler.close()

    print(f"\nAudit records: {len(audit_sink.events)}")
    for event in audit_sink.events:
        print(f"  {event.action} {event.instance_id[:8]} by {event.actor_id}: "
              f"{event.prior_assignee} -> {event.new_assignee}")

    print("\nFairness after demo:")
    for score in scheduler.fairness_scores(DEMO_ORG, DEMO_STABLE, as_of=end):
        print(f"  {score.member_id}: {score.score}")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point for CLI."""
    parser = argparse.ArgumentParser(
        description="Routine Planner - recurring routine scheduling",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s expand --start 2026-03-02 --end 2026-03-08 --pattern weekdays
  %(prog)s expand --start 2026-03-01 --end 2026-03-31 --pattern custom --days 0,2 \\
      --include-holidays --holiday 2026-03-17

  %(prog)s preview schedule.json          Print the plan for a schedule file
  %(prog)s preview schedule.json -o plan.txt

  %(prog)s demo                           Run the end-to-end demo
  %(prog)s demo --strategy balanced       Plan with the CP-SAT planner
        """,
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    parser.add_argument("--config", type=str, help="JSON configuration file")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Expand command
    expand_parser = subparsers.add_parser("expand", help="Print qualifying dates")
    expand_parser.add_argument("--start", required=True, help="First date (YYYY-MM-DD)")
    expand_parser.add_argument("--end", required=True, help="Last date (YYYY-MM-DD)")
    expand_parser.add_argument(
        "--pattern", "-p",
        default="daily",
        choices=["daily", "weekdays", "weekends", "holidays", "custom"],
        help="Repeat pattern (default: daily)",
    )
    expand_parser.add_argument(
        "--days", "-d",
        help="Comma-separated weekday numbers, Monday=0 (e.g. 0,2)",
    )
    expand_parser.add_argument(
        "--include-holidays",
        action="store_true",
        help="Also include holidays (custom pattern)",
    )
    expand_parser.add_argument(
        "--holiday",
        action="append",
        default=[],
        help="Holiday date (YYYY-MM-DD), may be repeated",
    )

    # Preview command
    preview_parser = subparsers.add_parser("preview", help="Plan a schedule from a JSON file")
    preview_parser.add_argument("input", help="Schedule JSON file")
    preview_parser.add_argument("--as-of", help="Reference date for fairness history")
    preview_parser.add_argument("--output", "-o", help="Write the report to a file")
    preview_parser.add_argument(
        "--strategy", "-s",
        choices=[s.value for s in PlannerStrategy],
        help=STRATEGY_HELP,
    )

    # Demo command
    demo_parser = subparsers.add_parser("demo", help="Run the end-to-end demo")
    demo_parser.add_argument(
        "--count", "-c",
        type=int,
        default=4,
        help="Number of members to generate (default: 4)",
    )
    demo_parser.add_argument(
        "--days", "-d",
        type=int,
        default=14,
        help="Number of days to schedule (default: 14)",
    )
    demo_parser.add_argument(
        "--strategy", "-s",
        choices=[s.value for s in PlannerStrategy],
        help=STRATEGY_HELP,
    )

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = load_config(args.config)
        if getattr(args, "strategy", None):
            config.planner.strategy = PlannerStrategy(args.strategy)

        if args.command == "expand":
            return run_expand(
                args.start, args.end, args.pattern, args.days, args.include_holidays, args.holiday
            )
        elif args.command == "preview":
            return run_preview(args.input, config, args.as_of, args.output)
        elif args.command == "demo":
            return run_demo(args.count, args.days, config)
        else:
            parser.print_help()
            return 1
    except DomainError as exc:
        print(f"Error: {exc.message}", file=sys.stderr)
        return 2
    except (OSError, ValueError, KeyError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
