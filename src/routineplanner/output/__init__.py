"""Output generation for assignment plans."""

from routineplanner.output.plan_report import PlanReportGenerator

__all__ = [
    "PlanReportGenerator",
]
