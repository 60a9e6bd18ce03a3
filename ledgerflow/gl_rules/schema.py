"""GL rule models: user-authored conditions/actions and evaluation results."""

from typing import Literal

from pydantic import BaseModel, Field

# Points per condition kind
VENDOR_PATTERN_POINTS = 30
AMOUNT_RANGE_POINTS = 20
KEYWORD_POINTS = 25
EXACT_DESCRIPTION_POINTS = 35
DATE_RANGE_POINTS = 10
CATEGORY_POINTS = 5

AUTO_APPLY_MIN_CONFIDENCE = 0.8
SUGGEST_MIN_CONFIDENCE = 0.5

MAX_SUGGESTIONS = 2


class AmountRange(BaseModel):
    min: float | None = None
    max: float | None = None


class DateRange(BaseModel):
    """Inclusive ISO date bounds."""

    start: str | None = None
    end: str | None = None


class GLRuleConditions(BaseModel):
    """Conditions a line item is scored against. Unset conditions are ignored."""

    vendor_patterns: list[str] = Field(default_factory=list)
    amount_range: AmountRange | None = None
    keywords: list[str] = Field(default_factory=list)
    exact_descriptions: list[str] = Field(default_factory=list)
    exclude_keywords: list[str] = Field(default_factory=list)
    date_range: DateRange | None = None
    line_item_category: list[str] = Field(default_factory=list)


class GLRuleActions(BaseModel):
    gl_code: str
    auto_assign: bool = False
    requires_approval: bool = False
    confidence_threshold: float | None = Field(None, ge=0, le=1)
    override_ai: bool = False


class GLRule(BaseModel):
    id: str
    user_id: str
    rule_name: str
    priority: int = Field(5, ge=1, le=10)
    is_active: bool = True
    conditions: GLRuleConditions = Field(default_factory=GLRuleConditions)
    actions: GLRuleActions


class LineItem(BaseModel):
    """Line item data a rule is evaluated against."""

    description: str = ""
    amount: float = 0.0
    vendor_name: str | None = None
    date: str | None = None
    category: str | None = None


class GLRuleMatch(BaseModel):
    """A rule that matched a line item.

    Attributes:
        rule: The matching rule
        score: Points earned
        matched_conditions: Names of the conditions that matched
        confidence: Points earned over points possible (0-1)
        should_auto_apply: Rule may be applied without confirmation
        requires_approval: Rule asks for manual approval
    """

    rule: GLRule
    score: float
    matched_conditions: list[str]
    confidence: float = Field(ge=0, le=1)
    should_auto_apply: bool
    requires_approval: bool


class AISuggestion(BaseModel):
    gl_code: str
    confidence: float = Field(ge=0, le=1)


class FinalSuggestion(BaseModel):
    gl_code: str
    source: Literal["rule", "ai", "manual"]
    confidence: float
    auto_applied: bool


class GLRuleEvaluationResult(BaseModel):
    matches: list[GLRuleMatch]
    suggestions: list[GLRuleMatch]
    best_match: GLRuleMatch | None = None
    ai_suggestion: AISuggestion | None = None
    final_suggestion: FinalSuggestion


class GLRuleTestResult(BaseModel):
    matched: bool
    score: float
    matched_conditions: list[str]
    explanation: str
