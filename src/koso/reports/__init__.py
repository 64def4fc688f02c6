from koso.reports.generator import ReportGenerator

__all__ = ["ReportGenerator"]
