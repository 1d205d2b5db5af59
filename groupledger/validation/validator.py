"""
Two-Stage Ledger Entry Validation

DESIGN DECISION: Entries are validated before they are appended to the
ledger, never while balances are computed. The balance aggregator trusts
what it is given, so this is the one place the ledger invariants are
enforced.

STAGE 1 - SCHEMA VALIDATION:
- Payer present
- At least one split
- Every split names a member

STAGE 2 - SEMANTIC VALIDATION:
- Splits add up to the entry amount (within the split tolerance)
- No member appears in more than one split (the payer's own share
  counted twice would inflate their credit)
- Settlements have exactly one split and do not pay oneself
- Payer and splits must resolve to someone; a stored name alone has to
  match a member
- References to people outside the group are flagged

Nothing is corrected automatically: every problem is reported back so the
entry can be fixed before it is recorded.
"""

from decimal import Decimal
from typing import Iterable, Optional

from groupledger.config import get_settings
from groupledger.identity import ReferenceResolver
from groupledger.models.ledger import (
    LedgerEntry,
    Member,
    UnresolvedRef,
    ValidationIssue,
    ValidationResult,
)


def _is_missing(ref, fallback_name: Optional[str]) -> bool:
    return isinstance(ref, UnresolvedRef) and not (ref.fallback_name or fallback_name)


class LedgerEntryValidator:
    """
    Validates ledger entries through a two-stage pipeline.

    Stage 1: Schema validation (structure)
    Stage 2: Semantic validation (needs the group's members)
    """

    def __init__(self, split_tolerance: Optional[float] = None):
        """
        Initialize validator.

        Args:
            split_tolerance: Allowed gap between splits and amount.
                            Defaults to the configured ledger setting.
        """
        if split_tolerance is None:
            split_tolerance = get_settings().ledger.split_tolerance
        self._split_tolerance = Decimal(str(split_tolerance))

    def _validate_schema(
        self,
        entry: LedgerEntry,
    ) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 1: Schema validation.

        Returns: (is_valid, list_of_issues)
        """
        issues = []

        if _is_missing(entry.payer, entry.payer_name_fallback):
            issues.append(ValidationIssue(
                field="payer",
                issue_type="missing",
                message="Who paid is required",
                severity="error",
                suggested_fix="Pick the member who paid",
            ))

        if not entry.splits:
            issues.append(ValidationIssue(
                field="splits",
                issue_type="missing",
                message="At least one person must share the expense",
                severity="error",
                suggested_fix="Select the members this expense is split between",
            ))

        for index, split in enumerate(entry.splits):
            if _is_missing(split.member, split.member_name_fallback):
                issues.append(ValidationIssue(
                    field=f"splits[{index}].member",
                    issue_type="missing",
                    message=f"Split #{index + 1} does not name a member",
                    severity="error",
                ))

        is_valid = not any(issue.severity == "error" for issue in issues)

        return is_valid, issues

    def _validate_semantic(
        self,
        entry: LedgerEntry,
        resolver: ReferenceResolver,
    ) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 2: Semantic validation.

        Returns: (is_valid, list_of_issues)
        """
        issues = []

        split_total = entry.split_total
        if abs(split_total - entry.amount) > self._split_tolerance:
            issues.append(ValidationIssue(
                field="splits",
                issue_type="split_mismatch",
                message=(
                    f"Splits sum ({split_total}) does not match "
                    f"total amount ({entry.amount})"
                ),
                severity="error",
                suggested_fix="Adjust the split amounts so they add up to the total",
            ))

        payer_key = resolver.resolve(entry.payer, entry.payer_name_fallback)
        seen = set()
        for split in entry.splits:
            key = resolver.resolve(split.member, split.member_name_fallback)
            if key is None:
                continue
            if key in seen:
                who = "The payer" if key == payer_key else resolver.display_name(
                    split.member, split.member_name_fallback
                )
                issues.append(ValidationIssue(
                    field="splits",
                    issue_type="double_counted",
                    message=f"{who} appears in more than one split",
                    severity="error",
                    suggested_fix="Merge the duplicate splits into one",
                ))
            seen.add(key)

        if entry.is_settlement:
            if len(entry.splits) != 1:
                issues.append(ValidationIssue(
                    field="splits",
                    issue_type="invalid_settlement",
                    message="A settlement must have exactly one receiver",
                    severity="error",
                ))
            elif payer_key is not None and payer_key == resolver.resolve(
                entry.splits[0].member, entry.splits[0].member_name_fallback
            ):
                issues.append(ValidationIssue(
                    field="splits",
                    issue_type="invalid_settlement",
                    message="A member cannot settle a debt with themselves",
                    severity="error",
                ))

        known = set(resolver.member_keys)
        references = [("payer", entry.payer, entry.payer_name_fallback)] + [
            (f"splits[{i}].member", s.member, s.member_name_fallback)
            for i, s in enumerate(entry.splits)
        ]
        for field, ref, fallback in references:
            key = resolver.resolve(ref, fallback)
            if key is None:
                # Balances would skip this piece and stop summing to zero
                issues.append(ValidationIssue(
                    field=field,
                    issue_type="unattributable_member",
                    message=(
                        f"{resolver.display_name(ref, fallback)} doesn't match "
                        "any member of this group"
                    ),
                    severity="error",
                    suggested_fix="Pick a group member, or add them to the group first",
                ))
            elif key not in known:
                issues.append(ValidationIssue(
                    field=field,
                    issue_type="unknown_member",
                    message=f"{resolver.display_name(ref, fallback)} is not a member of this group",
                    severity="warning",
                    suggested_fix="Add them to the group first",
                ))
            elif not resolver.get(key).is_active:
                issues.append(ValidationIssue(
                    field=field,
                    issue_type="inactive_member",
                    message=f"{resolver.get(key).name} has been removed from this group",
                    severity="warning",
                ))

        is_valid = not any(issue.severity == "error" for issue in issues)

        return is_valid, issues

    def validate(
        self,
        entry: LedgerEntry,
        members: Iterable[Member] = (),
    ) -> ValidationResult:
        """
        Validate an entry against the members of its group.

        Args:
            entry: The entry about to be recorded
            members: Members of the entry's group

        Returns:
            ValidationResult listing every issue from both stages
        """
        all_issues = []

        # Stage 1: Schema validation
        schema_valid, schema_issues = self._validate_schema(entry)
        all_issues.extend(schema_issues)

        # Semantic checks assume a well-formed entry
        semantic_valid = False
        if schema_valid:
            semantic_valid, semantic_issues = self._validate_semantic(
                entry, ReferenceResolver(members)
            )
            all_issues.extend(semantic_issues)

        warnings = [i.message for i in all_issues if i.severity == "warning"]

        return ValidationResult(
            entry_id=entry.id,
            schema_valid=schema_valid,
            semantic_valid=semantic_valid,
            is_valid=schema_valid and semantic_valid,
            issues=all_issues,
            warnings=warnings,
        )

    def get_user_friendly_summary(
        self,
        result: ValidationResult,
    ) -> str:
        """
        Plain-language summary for showing next to the entry form.
        """
        if result.is_valid and not result.warnings:
            return "✅ All checks passed."

        lines = []

        if result.has_errors:
            lines.append("❌ This entry can't be saved yet:")
            for issue in result.issues:
                if issue.severity == "error":
                    lines.append(f"   • {issue.message}")
                    if issue.suggested_fix:
                        lines.append(f"     💡 {issue.suggested_fix}")

        if result.warnings:
            lines.append("")
            lines.append("⚠️ Please verify the following:")
            for warning in result.warnings:
                lines.append(f"   • {warning}")

        return "\n".join(lines).strip()
