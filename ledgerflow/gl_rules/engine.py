"""Scored matching of line items against user-authored GL rules.

Each populated condition contributes points when it matches:

    vendor pattern 30, amount range 20, exact description 35,
    keywords 25 (proportional), date range 10, category 5

Exact descriptions and keywords share one slot: keywords are only scored when
no exact description matched, and only one of them counts towards the points
possible. An ``exclude_keywords`` hit vetoes the rule outright.
"""

import logging
import re
from collections.abc import Iterable
from datetime import date

from ledgerflow.gl_rules.schema import (
    AMOUNT_RANGE_POINTS,
    AUTO_APPLY_MIN_CONFIDENCE,
    CATEGORY_POINTS,
    DATE_RANGE_POINTS,
    EXACT_DESCRIPTION_POINTS,
    KEYWORD_POINTS,
    MAX_SUGGESTIONS,
    SUGGEST_MIN_CONFIDENCE,
    VENDOR_PATTERN_POINTS,
    AISuggestion,
    FinalSuggestion,
    GLRule,
    GLRuleActions,
    GLRuleConditions,
    GLRuleEvaluationResult,
    GLRuleMatch,
    GLRuleTestResult,
    LineItem,
)
from ledgerflow.shared import metrics

logger = logging.getLogger(__name__)

EXPLANATIONS = {
    "vendor_patterns": 'Vendor "{vendor}" matches pattern',
    "amount_range": "Amount ${amount} falls within range",
    "exact_descriptions": "Description matches exactly",
    "keywords": "Description contains required keywords",
    "date_range": "Date falls within specified range",
    "line_item_category": 'Category "{category}" matches',
}


def _parse_date(value: str | None) -> date | None:
    if not value:
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        logger.warning(f"Ignoring unparseable date: {value}")
        return None


def vendor_matches(pattern: str, vendor_name: str) -> bool:
    """Case-insensitive regex search, with substring match as a fallback."""
    try:
        if re.search(pattern, vendor_name, re.IGNORECASE):
            return True
    except re.error:
        logger.debug(f"Invalid vendor pattern '{pattern}', using substring match")
    return pattern.lower() in vendor_name.lower()


def possible_points(conditions: GLRuleConditions) -> int:
    """Points available from the populated conditions."""
    points = 0
    if conditions.vendor_patterns:
        points += VENDOR_PATTERN_POINTS
    if conditions.amount_range:
        points += AMOUNT_RANGE_POINTS
    if conditions.exact_descriptions:
        points += EXACT_DESCRIPTION_POINTS
    elif conditions.keywords:
        points += KEYWORD_POINTS
    if conditions.date_range:
        points += DATE_RANGE_POINTS
    if conditions.line_item_category:
        points += CATEGORY_POINTS
    return points


class GLRulesEngine:
    """Evaluates GL rules for line items. Stateless; safe to share."""

    def evaluate_rule(self, rule: GLRule, line_item: LineItem) -> GLRuleMatch | None:
        """Score one rule against one line item.

        Returns:
            GLRuleMatch, or None when the rule was vetoed or nothing matched
        """
        conditions = rule.conditions
        description = line_item.description.lower()

        for keyword in conditions.exclude_keywords:
            if keyword and keyword.lower() in description:
                logger.debug(f"Rule '{rule.rule_name}' excluded by keyword '{keyword}'")
                return None

        score = 0.0
        matched: list[str] = []

        if conditions.vendor_patterns and line_item.vendor_name:
            if any(vendor_matches(p, line_item.vendor_name) for p in conditions.vendor_patterns if p):
                score += VENDOR_PATTERN_POINTS
                matched.append("vendor_patterns")

        if conditions.amount_range:
            amount = abs(line_item.amount)
            low, high = conditions.amount_range.min, conditions.amount_range.max
            if (low is None or amount >= low) and (high is None or amount <= high):
                score += AMOUNT_RANGE_POINTS
                matched.append("amount_range")

        if any(description == d.lower() for d in conditions.exact_descriptions):
            score += EXACT_DESCRIPTION_POINTS
            matched.append("exact_descriptions")
        elif conditions.keywords:
            hits = sum(1 for k in conditions.keywords if k and k.lower() in description)
            if hits:
                score += hits / len(conditions.keywords) * KEYWORD_POINTS
                matched.append("keywords")

        if conditions.date_range and line_item.date:
            item_date = _parse_date(line_item.date)
            start = _parse_date(conditions.date_range.start)
            end = _parse_date(conditions.date_range.end)
            if item_date and (start is None or item_date >= start) and (end is None or item_date <= end):
                score += DATE_RANGE_POINTS
                matched.append("date_range")

        if line_item.category and line_item.category in conditions.line_item_category:
            score += CATEGORY_POINTS
            matched.append("line_item_category")

        if not matched:
            return None

        confidence = min(score / possible_points(conditions), 1.0)
        threshold = rule.actions.confidence_threshold
        if threshold is None:
            threshold = AUTO_APPLY_MIN_CONFIDENCE

        return GLRuleMatch(
            rule=rule,
            score=score,
            matched_conditions=matched,
            confidence=confidence,
            should_auto_apply=rule.actions.auto_assign and confidence >= threshold,
            requires_approval=rule.actions.requires_approval,
        )

    def evaluate_line_item(
        self,
        rules: Iterable[GLRule],
        line_item: LineItem,
        ai_suggestion: AISuggestion | None = None,
    ) -> GLRuleEvaluationResult:
        """Rank all matching active rules and pick a final GL code.

        Matches are ordered by confidence, then rule priority, both descending.
        Confidence here is the normalized score: points earned over the points
        possible for that rule's conditions. Raw ``score`` points are never
        compared across rules, so a narrow rule that fully matches outranks a
        broad rule that matches only partly.
        The top matches at or above the suggestion threshold are surfaced as
        suggestions. The final code comes from the best suggestion when it
        overrides AI or there is no AI suggestion, else from the AI, else it
        is left for manual entry.
        """
        matches = [
            match
            for rule in rules
            if rule.is_active and (match := self.evaluate_rule(rule, line_item)) is not None
        ]
        matches.sort(key=lambda m: (m.confidence, m.rule.priority), reverse=True)

        suggestions = [m for m in matches if m.confidence >= SUGGEST_MIN_CONFIDENCE][:MAX_SUGGESTIONS]
        best = suggestions[0] if suggestions else None

        if best and (best.rule.actions.override_ai or ai_suggestion is None):
            final = FinalSuggestion(
                gl_code=best.rule.actions.gl_code,
                source="rule",
                confidence=best.confidence,
                auto_applied=best.should_auto_apply,
            )
        elif ai_suggestion is not None:
            final = FinalSuggestion(
                gl_code=ai_suggestion.gl_code,
                source="ai",
                confidence=ai_suggestion.confidence,
                auto_applied=False,
            )
        else:
            final = FinalSuggestion(gl_code="", source="manual", confidence=0.0, auto_applied=False)

        metrics.gl_rule_evaluations_total.labels(result="matched" if best else "unmatched").inc()
        logger.info(
            f"GL rules: {len(matches)} matches for '{line_item.description}', "
            f"final {final.source} {final.gl_code or '-'}"
        )
        return GLRuleEvaluationResult(
            matches=matches,
            suggestions=suggestions,
            best_match=best,
            ai_suggestion=ai_suggestion,
            final_suggestion=final,
        )

    def test_rule(self, conditions: GLRuleConditions, line_item: LineItem) -> GLRuleTestResult:
        """Dry-run a set of conditions against sample data."""
        rule = GLRule(
            id="test",
            user_id="test",
            rule_name="Test Rule",
            priority=1,
            conditions=conditions,
            actions=GLRuleActions(gl_code="TEST-001"),
        )
        match = self.evaluate_rule(rule, line_item)
        if match is None:
            return GLRuleTestResult(
                matched=False,
                score=0,
                matched_conditions=[],
                explanation="Rule did not match the test data",
            )

        reasons = [
            EXPLANATIONS[name].format(
                vendor=line_item.vendor_name, amount=line_item.amount, category=line_item.category
            )
            for name in match.matched_conditions
        ]
        return GLRuleTestResult(
            matched=True,
            score=match.score,
            matched_conditions=match.matched_conditions,
            explanation=f"Rule matched with {round(match.confidence * 100)}% confidence: {', '.join(reasons)}",
        )
