import logging
import mimetypes
import os
import re
from dataclasses import dataclass, field
from io import BytesIO
from typing import List, Optional, Tuple

from pypdf import PdfReader
from pypdf.errors import PdfReadError

from .config import Settings
from .crm import CRMClient
from .docai import DocumentAI, DocumentAIError
from .errors import OnboardingError, ValidationFailed

logger = logging.getLogger(__name__)

VALID = "valid"
INVALID = "invalid"
UNVALIDATABLE = "unvalidatable"

REFERENCE_DOCTYPE = "Reference Document"
PDF_MIME = "application/pdf"

NAME_ALIASES = {
    "business registration": ["gewerbeanmeldung", "gewerbe-anmeldung", "business-registration"],
    "id document": ["ausweis", "personalausweis", "id-document"],
    "tax certificate": ["steuerbescheid", "tax-certificate"],
}

STRUCTURE_PROMPT = """You are a document validation expert. Check if the uploaded document has the SAME FORMAT, STRUCTURE, and TEMPLATE as the reference document.

Expected document type: "{label}"

Respond ONLY in JSON format:
{{
  "isValid": true/false,
  "message": "Short description (in English)",
  "reason": "Why the structure matches or not",
  "differences": ["Difference 1", "Difference 2"]
}}

RULES:
- Document name/title is NOT important, only STRUCTURE and FORMAT matter
- Content (names, dates, company data) will differ and must be ignored
- Only reject if the document is clearly a different type"""

TYPE_PROMPT = """You are a document validation expert. Check if the uploaded document matches the expected document type.

Expected document type: "{label}"

Respond ONLY in JSON format:
{{
  "isValid": true/false,
  "message": "Short description (in English)",
  "reason": "Why it is or is not this type of document",
  "differences": ["Missing element 1", "Missing element 2"]
}}

RULES:
- Document name/title can differ, focus on structure, fields and content type
- Only reject if the document is clearly a different document type"""


@dataclass
class Verdict:
    status: str
    message: str
    reason: str = ""
    differences: List[str] = field(default_factory=list)
    has_reference: bool = False
    reference_source: Optional[str] = None

    @property
    def is_valid(self) -> bool:
        return self.status == VALID

    def to_dict(self) -> dict:
        return {
            "isValid": self.is_valid,
            "status": self.status,
            "message": self.message,
            "reason": self.reason,
            "differences": list(self.differences),
            "hasReference": self.has_reference,
            "referenceSource": self.reference_source,
        }


def name_aliases(label: str) -> List[str]:
    lowered = label.lower().strip()
    aliases = [lowered]
    for key, values in NAME_ALIASES.items():
        if key in lowered or lowered in key or lowered in values:
            aliases.extend([key] + values)
            break
    return list(dict.fromkeys(aliases))


def _squash(text: str) -> str:
    return re.sub(r"[^a-z0-9]", "", text.lower())


def detect_mime(filename: str, content_type: Optional[str]) -> str:
    if content_type and content_type != "application/octet-stream":
        return content_type
    guessed, _ = mimetypes.guess_type(filename or "")
    return guessed or "application/octet-stream"


def pdf_text(content: bytes) -> str:
    reader = PdfReader(BytesIO(content))
    pages = [(page.extract_text() or "") for page in reader.pages]
    return "\n".join(p.strip() for p in pages if p.strip())


def first_page_image(content: bytes) -> Optional[Tuple[bytes, str]]:
    """Return the first image embedded in the PDF, which is the page itself for most scans."""
    reader = PdfReader(BytesIO(content))
    for page in reader.pages:
        for image in page.images:
            mime = mimetypes.guess_type(image.name)[0] or "image/png"
            return image.data, mime
    return None


def parse_verdict(answer: dict) -> Tuple[Optional[bool], str, str, List[str]]:
    is_valid = answer.get("isValid")
    if not isinstance(is_valid, bool):
        is_valid = None
    differences = answer.get("differences") or []
    if not isinstance(differences, list):
        differences = [str(differences)]
    return is_valid, str(answer.get("message") or ""), str(answer.get("reason") or ""), [str(d) for d in differences]


class DocumentValidator:
    def __init__(self, docai: DocumentAI, settings: Settings, crm: Optional[CRMClient] = None):
        self.docai = docai
        self.settings = settings
        self.crm = crm

    # ---------- text extraction ----------
    def _ocr(self, content: bytes, mime: str) -> str:
        try:
            return self.docai.extract_text_from_image(content, mime)
        except DocumentAIError as exc:
            logger.warning("ocr failed: %s", exc.message)
            return ""

    def extract_pdf(self, content: bytes) -> str:
        try:
            text = pdf_text(content)
        except (PdfReadError, ValueError, KeyError) as exc:
            logger.warning("pdf text extraction failed: %s", exc)
            return ""
        if text:
            return text
        try:
            image = first_page_image(content)
        except (PdfReadError, ValueError, KeyError, NotImplementedError) as exc:
            logger.warning("pdf image extraction failed: %s", exc)
            return ""
        if not image:
            return ""
        return self._ocr(*image)

    def extract_text(self, content: bytes, filename: str, content_type: Optional[str] = None) -> str:
        mime = detect_mime(filename, content_type)
        if mime == PDF_MIME or (filename or "").lower().endswith(".pdf"):
            return self.extract_pdf(content)
        if mime.startswith("image/"):
            return self._ocr(content, mime)
        raise ValidationFailed("Unsupported file format. Only PDF and image files are supported.")

    # ---------- reference documents ----------
    def _reference_from_crm(self, label: str) -> Optional[str]:
        if self.crm is None:
            return None
        try:
            row = self.crm.find(
                REFERENCE_DOCTYPE,
                [["document_name", "=", label], ["is_active", "=", 1]],
                fields=["name", "file_url", "attachment"],
            )
            file_url = row and (row.get("file_url") or row.get("attachment"))
            if not file_url:
                return None
            content = self.crm.download(file_url)
        except OnboardingError as exc:
            logger.warning("reference document for %s unavailable from crm: %s", label, exc.message)
            return None
        return self.extract_pdf(content) or None

    def _reference_file(self, label: str) -> Optional[str]:
        directory = self.settings.reference_documents_dir
        if not directory or not os.path.isdir(directory):
            return None
        aliases = [_squash(a) for a in name_aliases(label)]
        for filename in sorted(os.listdir(directory)):
            stem, ext = os.path.splitext(filename)
            if ext.lower() != ".pdf":
                continue
            squashed = _squash(stem).replace("reference", "")
            if squashed and any(a and (a in squashed or squashed in a) for a in aliases):
                return os.path.join(directory, filename)
        return None

    def _reference_from_dir(self, label: str) -> Optional[str]:
        path = self._reference_file(label)
        if not path:
            return None
        with open(path, "rb") as fh:
            return self.extract_pdf(fh.read()) or None

    def find_reference(self, label: str) -> Tuple[Optional[str], Optional[str]]:
        text = self._reference_from_crm(label)
        if text:
            return text, "crm"
        text = self._reference_from_dir(label)
        if text:
            return text, "local"
        return None, None

    # ---------- verdict ----------
    def validate(self, uploaded_text: str, label: str, reference_text: Optional[str] = None) -> Verdict:
        has_reference = bool(reference_text and reference_text.strip())
        if not (uploaded_text or "").strip():
            return Verdict(
                status=UNVALIDATABLE,
                message="No text could be read from the document, so it could not be checked.",
                reason="Text extraction and image reading both returned nothing",
                has_reference=has_reference,
            )
        limit = self.settings.validation_text_limit
        uploaded = uploaded_text[:limit]
        if has_reference:
            system = STRUCTURE_PROMPT.format(label=label)
            user = (
                f"REFERENCE DOCUMENT (correct format):\n{reference_text[:limit]}\n\n"
                f"UPLOADED DOCUMENT:\n{uploaded}\n\n"
                "Is the uploaded document similar in FORMAT, STRUCTURE, and TEMPLATE to the reference document?"
            )
        else:
            system = TYPE_PROMPT.format(label=label)
            user = f'Document content:\n{uploaded}\n\nIs this document a "{label}" type document?'

        try:
            answer = self.docai.complete_json(system, user)
        except DocumentAIError as exc:
            return Verdict(
                status=INVALID,
                message="The document could not be checked right now. Please try again.",
                reason=exc.message,
                has_reference=has_reference,
            )
        is_valid, message, reason, differences = parse_verdict(answer)
        if is_valid is None:
            logger.warning("document service gave no verdict for %s", label)
            return Verdict(
                status=INVALID,
                message="The document could not be checked right now. Please try again.",
                reason="Document service answer had no verdict",
                has_reference=has_reference,
            )
        if not message:
            message = "The document looks correct." if is_valid else f"The document does not look like a {label}."
        return Verdict(
            status=VALID if is_valid else INVALID,
            message=message,
            reason=reason,
            differences=[] if is_valid else differences,
            has_reference=has_reference,
        )

    def validate_upload(self, content: bytes, filename: str, content_type: Optional[str], label: str) -> Verdict:
        uploaded_text = self.extract_text(content, filename, content_type)
        reference_text, source = self.find_reference(label)
        verdict = self.validate(uploaded_text, label, reference_text)
        verdict.reference_source = source
        logger.info("document %s checked as %s: %s", filename, label, verdict.status)
        return verdict
