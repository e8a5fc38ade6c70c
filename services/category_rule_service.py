"""
Category rule engine and rule table service.

match_rule() and classify() are pure: they take the rule set and an ERP code
pair and return the deciding rule or its Web category id. CategoryRuleService owns the category_rules table and
refuses to save a second active rule for a pair that is already covered.
"""

from collections import defaultdict
from typing import Iterable, Optional
import structlog

from config import get_supabase_client, CATEGORY_RULES_TABLE, normalize_code
from models.category_rule import CategoryRule, CategoryRuleCreate, CategoryRuleUpdate
from exceptions import (
    AmbiguousRuleError,
    CategoryRuleNotFoundError,
    DuplicateCategoryRuleError,
    DatabaseError,
)

logger = structlog.get_logger(__name__)


# ===================
# CLASSIFICATION
# ===================

def _single_match(
    matches: list[CategoryRule],
    erp_code: str,
    erp_code2: Optional[str],
) -> Optional[CategoryRule]:
    if len(matches) > 1:
        raise AmbiguousRuleError(erp_code, erp_code2, [r.id for r in matches])
    return matches[0] if matches else None


def match_rule(
    erp_code: Optional[str],
    erp_code2: Optional[str],
    rules: Iterable[CategoryRule],
) -> Optional[CategoryRule]:
    """
    Rule that decides the category of an ERP code pair.

    An exact (code, code2) rule wins over a (code, None) wildcard rule.
    A matched rule may have no web_category_id ("explicitly unmapped").

    Args:
        erp_code: Primary ERP class code
        erp_code2: Secondary ERP class code, or None
        rules: Rule set (inactive rules are ignored)

    Returns:
        The matching rule, or None when no rule covers the pair

    Raises:
        AmbiguousRuleError: Two active rules match at the same specificity
    """
    code = normalize_code(erp_code)
    code2 = normalize_code(erp_code2) or None
    if not code:
        return None

    active = [r for r in rules if r.is_active and r.erp_class_code == code]

    if code2 is not None:
        exact = _single_match(
            [r for r in active if r.erp_class_code2 == code2], code, code2
        )
        if exact is not None:
            return exact

    return _single_match(
        [r for r in active if r.erp_class_code2 is None], code, None
    )


def classify(
    erp_code: Optional[str],
    erp_code2: Optional[str],
    rules: Iterable[CategoryRule],
) -> Optional[str]:
    """
    Web category for an ERP code pair.

    None both when no rule matches and when the matching rule is explicitly
    unmapped; use match_rule() to tell the two apart.

    Raises:
        AmbiguousRuleError: Two active rules match at the same specificity
    """
    rule = match_rule(erp_code, erp_code2, rules)
    return rule.web_category_id if rule is not None else None


def find_rule_conflicts(rules: Iterable[CategoryRule]) -> list[list[str]]:
    """
    Active rules sharing the same code pair.

    Returns:
        One list of rule ids per colliding pair
    """
    by_pair: dict[tuple[str, Optional[str]], list[str]] = defaultdict(list)
    for rule in rules:
        if rule.is_active:
            by_pair[rule.code_pair].append(rule.id or "")

    return [ids for ids in by_pair.values() if len(ids) > 1]


# ===================
# RULE TABLE
# ===================

class CategoryRuleService:
    """
    CRUD for the category_rules table.

    Keeps the active-pair uniqueness invariant on every write.
    """

    def __init__(self):
        self.db = get_supabase_client()
        self.table = CATEGORY_RULES_TABLE

    # ===================
    # READ OPERATIONS
    # ===================

    def get_all(self, active_only: bool = False) -> list[CategoryRule]:
        """
        Get all rules.

        Args:
            active_only: Only return active rules

        Returns:
            Rules ordered by class code
        """
        logger.debug("getting_category_rules", active_only=active_only)

        try:
            query = self.db.table(self.table).select("*")
            if active_only:
                query = query.eq("is_active", True)
            result = query.order("erp_class_code").execute()

            return [CategoryRule(**row) for row in result.data]

        except Exception as e:
            logger.error("get_category_rules_failed", error=str(e))
            raise DatabaseError("select", str(e))

    def get_by_id(self, rule_id: str) -> CategoryRule:
        """
        Get a single rule.

        Raises:
            CategoryRuleNotFoundError: If rule doesn't exist
        """
        try:
            result = (
                self.db.table(self.table)
                .select("*")
                .eq("id", rule_id)
                .execute()
            )
        except Exception as e:
            logger.error("get_category_rule_failed", rule_id=rule_id, error=str(e))
            raise DatabaseError("select", str(e))

        if not result.data:
            raise CategoryRuleNotFoundError(rule_id)

        return CategoryRule(**result.data[0])

    def classify(self, erp_code: str, erp_code2: Optional[str] = None) -> Optional[str]:
        """Classify against the active rules currently stored."""
        return classify(erp_code, erp_code2, self.get_all(active_only=True))

    # ===================
    # WRITE OPERATIONS
    # ===================

    def _ensure_pair_free(
        self,
        erp_code: str,
        erp_code2: Optional[str],
        exclude_id: Optional[str] = None,
    ) -> None:
        for rule in self.get_all(active_only=True):
            if rule.code_pair == (erp_code, erp_code2) and rule.id != exclude_id:
                raise DuplicateCategoryRuleError(erp_code, erp_code2, rule.id)

    def create(self, data: CategoryRuleCreate) -> CategoryRule:
        """
        Create a rule.

        Raises:
            DuplicateCategoryRuleError: Active rule already covers the pair
        """
        logger.info(
            "creating_category_rule",
            erp_class_code=data.erp_class_code,
            erp_class_code2=data.erp_class_code2
        )

        if data.is_active:
            self._ensure_pair_free(data.erp_class_code, data.erp_class_code2)

        try:
            result = self.db.table(self.table).insert(data.model_dump()).execute()
        except Exception as e:
            logger.error("create_category_rule_failed", error=str(e))
            raise DatabaseError("insert", str(e))

        rule = CategoryRule(**result.data[0])
        logger.info("category_rule_created", rule_id=rule.id)
        return rule

    def update(self, rule_id: str, data: CategoryRuleUpdate) -> CategoryRule:
        """
        Update a rule; only provided fields change.

        Raises:
            CategoryRuleNotFoundError: If rule doesn't exist
            DuplicateCategoryRuleError: Result would collide with another active rule
        """
        existing = self.get_by_id(rule_id)
        update_data = data.model_dump(include=data.model_fields_set)

        if not update_data:
            return existing

        merged = existing.model_copy(update=update_data)
        if merged.is_active:
            self._ensure_pair_free(merged.erp_class_code, merged.erp_class_code2, exclude_id=rule_id)

        try:
            self.db.table(self.table).update(update_data).eq("id", rule_id).execute()
        except Exception as e:
            logger.error("update_category_rule_failed", rule_id=rule_id, error=str(e))
            raise DatabaseError("update", str(e))

        logger.info("category_rule_updated", rule_id=rule_id, fields=sorted(update_data))
        return self.get_by_id(rule_id)

    def deactivate(self, rule_id: str) -> CategoryRule:
        """Pause a rule without deleting it."""
        return self.update(rule_id, CategoryRuleUpdate(is_active=False))

    def delete(self, rule_id: str) -> bool:
        """
        Delete a rule permanently.

        Raises:
            CategoryRuleNotFoundError: If rule doesn't exist
        """
        self.get_by_id(rule_id)

        try:
            self.db.table(self.table).delete().eq("id", rule_id).execute()
        except Exception as e:
            logger.error("delete_category_rule_failed", rule_id=rule_id, error=str(e))
            raise DatabaseError("delete", str(e))

        logger.info("category_rule_deleted", rule_id=rule_id)
        return True


# Singleton instance
_category_rule_service: Optional[CategoryRuleService] = None


def get_category_rule_service() -> CategoryRuleService:
    """Get or create CategoryRuleService instance."""
    global _category_rule_service
    if _category_rule_service is None:
        _category_rule_service = CategoryRuleService()
    return _category_rule_service
