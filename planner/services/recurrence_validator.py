"""Recurrence Validator."""
from typing import Any, Dict

from planner.schemas.task import EndConditionType, RecurrenceRuleFields, RecurrenceType


class RecurrenceValidator:
    """Validate recurrence rules before they are stored or expanded."""

    @staticmethod
    def validate_rule(rule: RecurrenceRuleFields) -> Dict[str, Any]:
        """
        Validate a recurrence rule.

        Args:
            rule: Embedded recurrence or recurring pattern

        Returns:
            Dict with validation result
        """
        result = {
            "valid": True,
            "errors": [],
            "warnings": []
        }

        if rule.type is RecurrenceType.WEEKLY and not rule.days_of_week:
            result["errors"].append("Weekly recurrence requires at least one day of week")

        if rule.type is RecurrenceType.AFTER_COMPLETION and not rule.days_after_completion:
            result["errors"].append("afterCompletion recurrence requires days_after_completion")

        if rule.type is RecurrenceType.YEARLY and rule.month_of_year is None:
            result["warnings"].append("Yearly recurrence without month_of_year uses the start month")

        if rule.type is not RecurrenceType.MONTHLY and (rule.nth_weekday or rule.specific_dates_of_month):
            result["warnings"].append("nth_weekday and specific_dates_of_month only apply to monthly recurrence")

        if rule.type is RecurrenceType.MONTHLY and rule.nth_weekday and rule.specific_dates_of_month:
            result["warnings"].append("nth_weekday takes precedence over specific_dates_of_month")

        result["errors"].extend(RecurrenceValidator._validate_end_condition(rule))
        result["valid"] = not result["errors"]
        return result

    @staticmethod
    def _validate_end_condition(rule: RecurrenceRuleFields) -> list:
        end = rule.end_condition
        if end.type is EndConditionType.DATE and end.end_date is None:
            return ["An end condition of type 'date' requires end_date"]
        if end.type is EndConditionType.OCCURRENCES and not end.max_occurrences:
            return ["An end condition of type 'occurrences' requires max_occurrences"]
        return []
