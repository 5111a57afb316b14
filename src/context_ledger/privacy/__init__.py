"""Privacy controls: redaction of captured text."""

from context_ledger.privacy.redact import RedactionRule, build_redaction_rules, redact_text

__all__ = ["RedactionRule", "build_redaction_rules", "redact_text"]
