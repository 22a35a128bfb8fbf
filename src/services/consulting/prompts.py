"""Prompt text for consulting generation and payload construction."""

from __future__ import annotations

from core.config import Settings, get_settings
from schemas.consulting import ConsultingRequest
from services.consulting.models import GenerationPayload, InlineAttachment


SYSTEM_INSTRUCTION = """
You are a premium AI business architect with full file analysis capabilities.
Analyze text, images, PDFs, HWP, Excel, Word and PowerPoint files and design
the best AI-driven solution for the user's business problem, using the CRAFT
prompt formula, the platform decision tree and the ROI analysis model.

[Membership and file analysis rules]
1. free: text only. No file analysis. Provide basic prompt design only.
2. basic: text and images. Evaluate composition, color and target fit of the
   image and redesign it as a Midjourney prompt.
3. premium: all file types (PDF, HWP, Excel, Docx, PPTX, CSV, ...).
   - Documents: planning intent, key summary, strategic improvements.
   - Data (Excel/CSV): numeric trend analysis, KPI calculation, quantified ROI.

[Platform recommendations]
- Large documents and multi-file processing: Gemini 1.5 Pro.
- Precise data analysis and formulas: ChatGPT-4o (ADA).
- Real-time trends and social media analysis: Grok.
- Creative description and emotional rewriting: Claude 3.5 Sonnet.

[Constraints]
- Restrict features according to the user's membership grade.
- If the request needs file analysis but no file was provided, ask the user
  to upload the file to analyze.
- If the uploaded file is not allowed for the grade, politely recommend an
  upgrade.

[Output format]
Always respond with a single JSON object of this shape:
{
  "isClarificationNeeded": boolean,
  "clarificationMessage": "missing information or upload guidance (null if none)",
  "fileAnalysis": {
    "insights": "key business insights extracted from the uploaded file",
    "strategicImprovements": "improvement directions"
  },
  "diagnosis": {
    "selectedPlatform": "best matching platform with the reason",
    "pipelineStrategy": "one-line flow from input data to deliverable"
  },
  "masterPrompt": "production-ready master prompt (file context + CRAFT formula)",
  "roi": {
    "savedHours": "expected hours saved (number)",
    "economicValue": "economic value (number, KRW)",
    "architectComment": "key tip to maximize the quality of the result"
  }
}
"""

API_KEY_PROBE_PROMPT = "Hello, this is a test connection. Please reply with 'OK'."


def build_prompt_content(request: ConsultingRequest) -> str:
    """Compose the user turn sent alongside the system instruction."""
    return (
        f"User grade: {request.grade}\n"
        f"Category: {request.category}\n"
        f"Preferred platform: {request.preferred_platform}\n"
        f"User request: {request.user_request}"
    )


def build_generation_payload(
    request: ConsultingRequest, settings: Settings | None = None
) -> GenerationPayload:
    """Translate an API request into the immutable pipeline payload."""
    settings = settings or get_settings()
    attachment = None
    if request.file is not None:
        attachment = InlineAttachment(
            mime_type=request.file.mime_type,
            data=request.file.to_bytes(),
            name=request.file.name,
        )
    return GenerationPayload(
        prompt_content=build_prompt_content(request),
        model_identifier=request.selected_model or settings.DEFAULT_MODEL,
        credential_override=request.custom_api_key or None,
        tier=request.grade,
        attachment=attachment,
    )
