# datavision/analysis_service.py

import json
import logging
from typing import Any, Dict, List, Sequence

from pydantic import ValidationError

from datavision.backend_prompts import ANALYSIS_PROMPT, DOMAIN_KNOWLEDGE
from datavision.base_utils import BaseUtils
from datavision.entities import SOLUTION_LEVELS, AnalysisResult, CellValue, SpreadsheetPreview
from datavision.exceptions import EmptyResponseError, SchemaValidationError
from datavision.google_helpers import ANALYSIS_TEMPERATURE, REPLY_LANGUAGE

logger = logging.getLogger("datavision_backend")


ANALYSIS_RESPONSE_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "options": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "level": {"type": "integer", "description": "20, 50, 70, or 100"},
                    "title": {"type": "string"},
                    "description": {"type": "string"},
                    "executiveBenefits": {
                        "type": "string",
                        "description": "Benefits for executives: ROI and decision making",
                    },
                    "operationalBenefits": {
                        "type": "string",
                        "description": "Benefits for operators: ease and speed of daily work",
                    },
                    "technologies": {"type": "array", "items": {"type": "string"}},
                    "developmentTools": {
                        "type": "string",
                        "description": "Main build tools, e.g. Excel Macro, Power Apps, React, Python or an off-the-shelf platform",
                    },
                    "visualization": {
                        "type": "string",
                        "description": "Overall data presentation strategy (general strategy)",
                    },
                    "concreteOutputs": {
                        "type": "array",
                        "items": {"type": "string"},
                        "description": "At least 3-4 concrete outputs, e.g. 'Map Heatmap of station density', "
                                       "'Bubble Map comparing volumes', 'Instant Line Notify alert', 'Daily Webex Alert'",
                    },
                },
                "required": [
                    "level",
                    "title",
                    "description",
                    "executiveBenefits",
                    "operationalBenefits",
                    "technologies",
                    "developmentTools",
                    "visualization",
                    "concreteOutputs",
                ],
            },
        }
    },
    "required": ["options"],
}


class AnalysisService(BaseUtils):
    """
    Turns a spreadsheet preview into four tiers of solution options.

    The request is schema-constrained; the reply is decoded and validated strictly.
    A malformed reply is rejected as a whole, never repaired or partially kept.
    """

    def __init__(self, llm=None, temperature: float = ANALYSIS_TEMPERATURE, reply_language: str = REPLY_LANGUAGE):
        if llm is None:
            llm, _ = self._build_llms_for_model()
        self.llm = llm
        self.temperature = temperature
        self.reply_language = reply_language

    def build_prompt(self, headers: Sequence[str], sample_rows: Sequence[Sequence[CellValue]]) -> str:
        return self.unsafe_string_format(
            ANALYSIS_PROMPT,
            HEADERS_JSON=self.to_prompt_json(list(headers)),
            SAMPLE_DATA_JSON=self.to_prompt_json([list(r) for r in sample_rows]),
            DOMAIN_KNOWLEDGE=DOMAIN_KNOWLEDGE.strip(),
            LEVELS=", ".join(str(lv) for lv in SOLUTION_LEVELS),
            REPLY_LANGUAGE=self.reply_language,
        )

    def analyze_preview(self, preview: SpreadsheetPreview) -> AnalysisResult:
        return self.request_analysis(preview.headers, preview.sample_rows)

    def request_analysis(self, headers: Sequence[str], sample_rows: Sequence[Sequence[CellValue]]) -> AnalysisResult:
        if self.llm is None:
            raise RuntimeError("No LLM client available for analysis")

        prompt = self.build_prompt(headers, sample_rows)
        logger.debug("request_analysis prompt\n%s", prompt)

        try:
            raw = self.llm.invoke_structured(
                prompt,
                response_schema=ANALYSIS_RESPONSE_SCHEMA,
                temperature=self.temperature,
                schema_name="analysis_result",
            )
        except Exception as e:
            logger.error("Analysis request failed: %s", e, exc_info=True)
            raise

        logger.debug("request_analysis usage %s", self.llm.get_accrued_usage())

        if not raw or not str(raw).strip():
            raise EmptyResponseError("No response data received from the model")

        result = decode_analysis(str(raw), cleaner=self.strip_code_fence)
        logger.info(
            "Analysis decoded: %d option(s), levels=%s",
            len(result.options), [o.level for o in result.options],
        )
        return result


def decode_analysis(raw: str, cleaner=None) -> AnalysisResult:
    """
    Decode the model's JSON text into an AnalysisResult.
    Any decode or shape failure raises SchemaValidationError.
    """
    text = cleaner(raw).strip() if cleaner else raw.strip()
    try:
        data = json.loads(text)
    except Exception as e:
        raise SchemaValidationError(f"Analysis response is not valid JSON: {e}", raw=raw) from e

    if not isinstance(data, dict):
        raise SchemaValidationError("Analysis response must be a JSON object with an 'options' array", raw=raw)

    try:
        return AnalysisResult.model_validate(data)
    except ValidationError as e:
        raise SchemaValidationError(
            f"Analysis response does not match the option schema: {_summarize_errors(e)}",
            raw=raw,
        ) from e


def _summarize_errors(error: ValidationError, limit: int = 5) -> str:
    parts: List[str] = []
    for err in error.errors()[:limit]:
        loc = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{loc}: {err.get('msg')}")
    more = error.error_count() - len(parts)
    if more > 0:
        parts.append(f"... {more} more")
    return "; ".join(parts)
