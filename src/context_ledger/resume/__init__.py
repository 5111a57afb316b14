"""Budget-bounded resume packs."""

from context_ledger.resume.pack import (
    RenderLimits,
    ResumePackResult,
    build_resume_pack,
    estimate_tokens,
    save_resume_pack,
)

__all__ = [
    "RenderLimits",
    "ResumePackResult",
    "build_resume_pack",
    "estimate_tokens",
    "save_resume_pack",
]
