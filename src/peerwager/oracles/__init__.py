"""AI oracles: remark moderation and dispute arbitration."""

from .arbitrator import ArbitrationVerdict, DisputeArbitrator, build_arbitration_prompt, validate_verdict
from .client import GeminiOracleClient, OracleClient, parse_json_response
from .remark_gate import RemarkQualityGate, RemarkVerdict, RemarkVerdictKind, build_remark_prompt

__all__ = [
    "ArbitrationVerdict",
    "DisputeArbitrator",
    "GeminiOracleClient",
    "OracleClient",
    "RemarkQualityGate",
    "RemarkVerdict",
    "RemarkVerdictKind",
    "build_arbitration_prompt",
    "build_remark_prompt",
    "parse_json_response",
    "validate_verdict",
]
