"""
Lead finder: web search + model extraction of B2B logistics prospects.

search_prospects() runs the pipeline, import_results() copies stored
prospects into the org's lead list, draft_outreach_email() writes a cold
email for one prospect.
"""
from __future__ import annotations

import ipaddress
import json
import logging
import re
import socket
import threading
import time
from typing import Any
from urllib.parse import urlparse

import requests
from openai import OpenAI
from sqlalchemy.orm import Session

from heartf.core.config import settings
from heartf.models.lead_finder import LeadFinderImport, LeadFinderResult, LeadFinderSearch
from heartf.services import data_store
from heartf.services.auth import Principal

logger = logging.getLogger(__name__)

IMPORT_ROLES = ("admin", "ops_manager", "dispatcher")


class LeadFinderError(Exception):
    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


# ---------------------------------------------------------------------------
# Input normalisation
# ---------------------------------------------------------------------------

def _norm(value: Any) -> str:
    return "" if value is None else str(value).strip()


def as_array(value: Any) -> list[str]:
    if isinstance(value, (list, tuple)):
        return [str(item).strip() for item in value if item is not None and str(item).strip()]
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    return []


def normalize_incoming(body: dict[str, Any]) -> dict[str, Any]:
    """Accepts the current (query/geography/...) or the legacy (industry/location/...) search shape."""
    body = body or {}
    legacy_industry = _norm(body.get("industry"))
    legacy_location = _norm(body.get("location"))
    legacy_keywords = _norm(body.get("keywords"))
    legacy_company_size = _norm(body.get("companySize"))

    query = _norm(body.get("query")) or " ".join(
        part for part in (legacy_industry, legacy_location, legacy_keywords) if part
    ).strip()

    return {
        "query": query,
        "geography": _norm(body.get("geography")) or legacy_location,
        "industryFocus": _norm(body.get("industryFocus")) or legacy_industry,
        "intentFocus": _norm(body.get("intentFocus")) or legacy_keywords,
        "minHeadcount": _norm(body.get("minHeadcount")) or legacy_company_size,
        "excludeIndustries": as_array(body.get("excludeIndustries")),
        "excludeKeywords": as_array(body.get("excludeKeywords")),
        "forceRefresh": bool(body.get("forceRefresh")),
        "verify": bool(body.get("verify")),
    }


def cache_key(criteria: dict[str, Any]) -> str:
    keyed = {
        name: criteria.get(name)
        for name in (
            "query",
            "geography",
            "industryFocus",
            "intentFocus",
            "minHeadcount",
            "excludeIndustries",
            "excludeKeywords",
            "verify",
        )
    }
    return json.dumps(keyed, sort_keys=True)


class SearchCache:
    """Process-local TTL cache of normalised search results."""

    def __init__(self, ttl_seconds: int):
        self.ttl_seconds = ttl_seconds
        self._entries: dict[str, tuple[float, dict[str, Any]]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> dict[str, Any] | None:
        with self._lock:
            hit = self._entries.get(key)
            if not hit:
                return None
            created_at, value = hit
            if time.monotonic() - created_at > self.ttl_seconds:
                self._entries.pop(key, None)
                return None
            return value

    def set(self, key: str, value: dict[str, Any]) -> None:
        with self._lock:
            self._entries[key] = (time.monotonic(), value)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


search_cache = SearchCache(settings.LEAD_FINDER_CACHE_TTL_SECONDS)


# ---------------------------------------------------------------------------
# Prompting
# ---------------------------------------------------------------------------

SYSTEM_INSTRUCTION = (
    f"You are a B2B logistics lead prospector for {settings.COMPANY_NAME}.\n\n"
    "Non-negotiable rules:\n"
    "- Use only the web search results you are given as evidence.\n"
    "- Do NOT fabricate facts, contacts, or companies.\n"
    "- Every lead MUST include: companyName AND (website OR sourceUrl). Prefer both.\n"
    "- If you cannot find a verified contact, leave contact fields blank.\n"
    "- Each lead should include a public sourceUrl that supports the company existence and fit.\n"
    "- Follow exclusions strictly: do not include excluded industries or excluded keywords.\n\n"
    "Return JSON only, no markdown, no commentary."
)

LEAD_SCHEMA = """Return JSON matching exactly:
{
  "leads": [
    {
      "companyName": "",
      "summary": "",
      "location": "",
      "industry": "",
      "companySize": "",
      "website": "",
      "intentSignal": "",
      "contact": { "name": "", "title": "", "email": "", "phone": "", "linkedin": "" },
      "sourceUrl": "",
      "confidence": 0.0,
      "sourcesCount": 0,
      "verified": false
    }
  ]
}"""


def build_prompt(criteria: dict[str, Any], search_hits: list[dict[str, str]] | None = None) -> str:
    exclude_industries = ", ".join(criteria["excludeIndustries"]) or "(none)"
    exclude_keywords = ", ".join(criteria["excludeKeywords"]) or "(none)"

    evidence_lines = [
        f"- {hit.get('title', '')} | {hit.get('url', '')} | {hit.get('snippet', '')}"
        for hit in (search_hits or [])
    ]
    evidence = "\n".join(evidence_lines) or "(no web results available)"

    return f"""Task:
Find 4-8 real companies that are likely buyers of logistics/freight/fleet/transport services.

You must:
- Base every lead on the web results below.
- Enforce exclusions.
- Include a short evidence-based "intentSignal" (what indicates logistics need).

Search criteria:
- Query: {criteria['query']}
- Geography focus: {criteria['geography'] or '(any)'}
- Industry focus: {criteria['industryFocus'] or '(any)'}
- Intent focus: {criteria['intentFocus'] or '(any)'}
- Company size / headcount: {criteria['minHeadcount'] or '(any)'}

Exclusions (strict):
- Exclude industries: {exclude_industries}
- Exclude keywords: {exclude_keywords}

Web results:
{evidence}

Quality rules:
- summary: 1-2 sentences describing what they do and why they fit logistics.
- intentSignal: cite what you found (expansion, distribution, export, warehousing, procurement, etc.).
- confidence: 0.0-1.0
- verified: true only if evidence is strong and sources are credible.
- sourcesCount: number of distinct sources you used for that lead (estimate).

{LEAD_SCHEMA}
Return JSON only."""


_FENCED_JSON = re.compile(r"```json([\s\S]*?)```", re.IGNORECASE)


def extract_json(text: str | None) -> Any | None:
    """Pull a JSON object out of model output, tolerating ```json fences and surrounding prose."""
    if not text:
        return None
    fenced = _FENCED_JSON.search(text)
    candidate = fenced.group(1) if fenced else text

    start = candidate.find("{")
    end = candidate.rfind("}")
    if start == -1 or end == -1:
        return None
    try:
        return json.loads(candidate[start : end + 1])
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# Result normalisation
# ---------------------------------------------------------------------------

def clamp01(value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if number != number or number in (float("inf"), float("-inf")):
        return 0.0
    return max(0.0, min(1.0, number))


_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def hash_id(value: str) -> str:
    """Short stable id (djb2 xor variant, 32-bit) rendered in base 36."""
    digest = 5381
    for char in value:
        digest = ((digest * 33) ^ ord(char)) & 0xFFFFFFFF
    if digest == 0:
        return "0"
    out = ""
    while digest:
        digest, rem = divmod(digest, 36)
        out = _BASE36[rem] + out
    return out


def _contains_any(haystack: str, needles: list[str]) -> bool:
    lowered = haystack.lower()
    return any(needle and needle.lower() in lowered for needle in needles)


def _or_none(value: str) -> str | None:
    return value or None


def normalize_lead_list(payload: Any, criteria: dict[str, Any]) -> tuple[list[dict[str, Any]], list[str]]:
    reason_hints: list[str] = []
    raw = payload.get("leads") if isinstance(payload, dict) else None
    raw = raw if isinstance(raw, list) else []
    exclude_industries = [item.lower() for item in criteria.get("excludeIndustries") or []]
    exclude_keywords = [item.lower() for item in criteria.get("excludeKeywords") or []]

    normalized: list[dict[str, Any]] = []
    for index, lead in enumerate(raw):
        lead = lead if isinstance(lead, dict) else {}
        company_name = _norm(lead.get("companyName"))
        website = _norm(lead.get("website"))
        source_url = _norm(lead.get("sourceUrl"))
        summary = _norm(lead.get("summary"))
        industry = _norm(lead.get("industry"))
        intent_signal = _norm(lead.get("intentSignal"))

        if not company_name:
            reason_hints.append("Dropped a lead with missing companyName.")
            continue
        if not website and not source_url:
            reason_hints.append(f'Dropped "{company_name}" (missing website/sourceUrl).')
            continue
        if exclude_industries and _contains_any(industry, exclude_industries):
            reason_hints.append(f'Excluded "{company_name}" (industry matched exclusion: "{industry}").')
            continue
        haystack = f"{company_name} {summary} {industry} {intent_signal} {website} {source_url}"
        if exclude_keywords and _contains_any(haystack, exclude_keywords):
            reason_hints.append(f'Excluded "{company_name}" (matched excluded keyword).')
            continue

        contact = lead.get("contact") if isinstance(lead.get("contact"), dict) else {}
        sources_count = lead.get("sourcesCount")
        normalized.append(
            {
                "id": hash_id(f"{company_name}|{website}|{source_url}|{index}"),
                "companyName": company_name,
                "website": _or_none(website),
                "location": _or_none(_norm(lead.get("location"))),
                "industry": _or_none(industry),
                "companySize": _or_none(_norm(lead.get("companySize"))),
                "summary": _or_none(summary),
                "intentSignal": _or_none(intent_signal),
                "confidence": clamp01(lead.get("confidence")),
                "sourceUrl": source_url or website,
                "verified": bool(lead.get("verified")),
                "sourcesCount": sources_count if isinstance(sources_count, (int, float)) and not isinstance(sources_count, bool) else None,
                "contact": {
                    field: _or_none(_norm(contact.get(field)))
                    for field in ("name", "title", "email", "phone", "linkedin")
                },
            }
        )

    seen: set[str] = set()
    deduped: list[dict[str, Any]] = []
    for prospect in normalized:
        key = "|".join(
            (
                prospect["companyName"].lower(),
                (prospect["website"] or "").lower(),
                (prospect["sourceUrl"] or "").lower(),
            )
        )
        if key in seen:
            continue
        seen.add(key)
        deduped.append(prospect)

    deduped.sort(key=lambda p: (not p["verified"], -p["confidence"]))
    return deduped, reason_hints


# ---------------------------------------------------------------------------
# External calls
# ---------------------------------------------------------------------------

def web_search(query: str) -> list[dict[str, str]]:
    """Query the configured search API. Returns [] when it is not configured or fails."""
    url = (settings.SEARCH_API_URL or "").strip()
    if not url:
        return []

    headers = {"Accept": "application/json"}
    if settings.SEARCH_API_KEY:
        headers["Authorization"] = f"Bearer {settings.SEARCH_API_KEY}"

    try:
        response = requests.get(
            url,
            params={"q": query, "num": settings.SEARCH_MAX_RESULTS},
            headers=headers,
            timeout=settings.SEARCH_API_TIMEOUT_SECONDS,
        )
        response.raise_for_status()
        data = response.json()
    except (requests.RequestException, ValueError) as exc:
        logger.warning("lead finder: web search failed: %s", exc)
        return []

    if not isinstance(data, dict):
        return []
    items = data.get("results") or data.get("items") or data.get("organic") or []
    hits = []
    for item in items[: settings.SEARCH_MAX_RESULTS]:
        if not isinstance(item, dict):
            continue
        hits.append(
            {
                "title": _norm(item.get("title")),
                "url": _norm(item.get("url") or item.get("link")),
                "snippet": _norm(item.get("snippet") or item.get("description")),
            }
        )
    return hits


def _openai_client() -> OpenAI:
    api_key = (settings.OPENAI_API_KEY or "").strip()
    if not api_key:
        raise LeadFinderError("AI is not configured. Set OPENAI_API_KEY.", status_code=500)
    return OpenAI(api_key=api_key)


def complete_json(system: str | None, prompt: str, *, temperature: float, max_tokens: int) -> tuple[Any | None, str]:
    """Single chat completion; returns (parsed JSON or None, raw text)."""
    client = _openai_client()
    messages = [{"role": "system", "content": system}] if system else []
    messages.append({"role": "user", "content": prompt})
    response = client.chat.completions.create(
        model=settings.OPENAI_MODEL,
        temperature=temperature,
        max_tokens=max_tokens,
        messages=messages,
    )
    text = (response.choices[0].message.content or "").strip()
    return extract_json(text), text


def is_public_http_url(url: str) -> bool:
    """True for http(s) URLs whose host resolves only to public addresses."""
    try:
        parsed = urlparse(url)
        port = parsed.port
    except ValueError:
        return False
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        return False

    try:
        infos = socket.getaddrinfo(
            parsed.hostname,
            port or (443 if parsed.scheme == "https" else 80),
            proto=socket.IPPROTO_TCP,
        )
    except (socket.gaierror, UnicodeError):
        return False

    for info in infos:
        try:
            address = ipaddress.ip_address(str(info[4][0]).split("%")[0])
        except ValueError:
            return False
        if not address.is_global:
            return False
    return bool(infos)


def verify_prospect(prospect: dict[str, Any]) -> dict[str, Any]:
    """Fetch the prospect page and mark it verified when the company name appears on it."""
    url = prospect.get("sourceUrl") or prospect.get("website")
    if not url or prospect.get("verified"):
        return prospect
    if not is_public_http_url(url):
        logger.info("lead finder: refusing to fetch %s", url)
        return prospect
    try:
        response = requests.get(
            url,
            timeout=settings.LEAD_FINDER_VERIFY_TIMEOUT_SECONDS,
            headers={"User-Agent": f"{settings.APP_NAME} lead verifier"},
            allow_redirects=False,
        )
        response.raise_for_status()
    except requests.RequestException as exc:
        logger.info("lead finder: could not fetch %s: %s", url, exc)
        return prospect

    if prospect["companyName"].lower() in (response.text or "").lower():
        return {**prospect, "verified": True}
    return prospect


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------

def _store_search(
    db: Session,
    principal: Principal,
    criteria: dict[str, Any],
    results: list[dict[str, Any]],
) -> tuple[int, list[dict[str, Any]]]:
    search = LeadFinderSearch(
        org_id=principal.org_id,
        user_id=principal.user_id,
        query={key: value for key, value in criteria.items() if key != "forceRefresh"},
    )
    db.add(search)
    db.flush()

    stored = []
    for prospect in results:
        row = LeadFinderResult(org_id=principal.org_id, search_id=search.id, prospect=prospect)
        db.add(row)
        db.flush()
        stored.append({**prospect, "resultId": row.id})
    return search.id, stored


def search_prospects(
    db: Session | None,
    principal: Principal | None,
    body: dict[str, Any],
) -> dict[str, Any]:
    criteria = normalize_incoming(body)
    if not criteria["query"]:
        raise LeadFinderError("Missing query. Provide query or industry/location/keywords.")
    if principal is None:
        # Page fetches run on behalf of signed-in users only.
        criteria["verify"] = False

    key = cache_key(criteria)
    cached = None if criteria["forceRefresh"] else search_cache.get(key)

    if cached is not None:
        results, reason_hints = cached["results"], cached["reasonHints"]
    else:
        hits = web_search(criteria["query"])
        payload, raw_text = complete_json(
            SYSTEM_INSTRUCTION,
            build_prompt(criteria, hits),
            temperature=0.2,
            max_tokens=4096,
        )
        if payload is None:
            logger.warning("lead finder: model returned invalid JSON: %s", raw_text[:200])
            raise LeadFinderError("Model did not return valid JSON.", status_code=500)

        results, reason_hints = normalize_lead_list(payload, criteria)
        if criteria["verify"]:
            results = [verify_prospect(prospect) for prospect in results]
            results.sort(key=lambda p: (not p["verified"], -p["confidence"]))
        search_cache.set(key, {"results": results, "reasonHints": reason_hints})

    response: dict[str, Any] = {
        "cached": cached is not None,
        "results": results,
        "reasonHints": reason_hints,
    }
    if db is not None and principal is not None:
        search_id, stored = _store_search(db, principal, criteria, results)
        response["searchId"] = search_id
        response["results"] = stored
    return response


def prospect_to_lead(prospect: dict[str, Any]) -> dict[str, Any]:
    contact = prospect.get("contact") or {}
    name_parts = (contact.get("name") or "").split()
    source_url = prospect.get("sourceUrl") or prospect.get("website")
    return {
        "first_name": name_parts[0] if name_parts else "Unknown",
        "last_name": " ".join(name_parts[1:]) if len(name_parts) > 1 else "Contact",
        "email": contact.get("email") or "",
        "phone": contact.get("phone") or "",
        "company_name": prospect.get("companyName") or "",
        "company_size": prospect.get("companySize") or "",
        "industry": prospect.get("industry") or "other",
        "position": contact.get("title") or "Operations Lead",
        "website": prospect.get("website") or prospect.get("sourceUrl") or "",
        "lead_source": "other",
        "lead_status": "new",
        "logistics_needs": prospect.get("intentSignal")
        or prospect.get("summary")
        or "High-potential logistics buyer discovered via lead finder.",
        "notes": f"Found via lead finder: {source_url}" if source_url else "Found via lead finder",
        "tags": ["prospected", "lead-finder"],
        "custom_fields": {
            "ai_confidence": round(clamp01(prospect.get("confidence")) * 100),
            "ai_summary": prospect.get("summary"),
            "sources_count": prospect.get("sourcesCount"),
            "verified": bool(prospect.get("verified")),
            "source_url": source_url,
        },
    }


def import_results(db: Session, principal: Principal, search_id: int, result_ids: list[int]) -> dict[str, Any]:
    if not search_id or not result_ids:
        raise LeadFinderError("Missing searchId or resultIds")

    search = (
        db.query(LeadFinderSearch)
        .filter(LeadFinderSearch.id == search_id, LeadFinderSearch.org_id == principal.org_id)
        .first()
    )
    if search is None:
        raise LeadFinderError("Search not found", status_code=404)

    rows = (
        db.query(LeadFinderResult)
        .filter(
            LeadFinderResult.search_id == search.id,
            LeadFinderResult.org_id == principal.org_id,
            LeadFinderResult.id.in_(result_ids),
        )
        .order_by(LeadFinderResult.id.asc())
        .all()
    )
    if not rows:
        raise LeadFinderError("No valid results to import")

    already = {
        row.result_id
        for row in db.query(LeadFinderImport.result_id).filter(LeadFinderImport.search_id == search.id).all()
    }

    state = data_store.load_state(db, principal.org_id)
    imported = []
    for row in rows:
        if row.id in already:
            continue
        lead = data_store.add_record(state, "leads", prospect_to_lead(row.prospect or {}), principal.actor)
        imported.append({"resultId": row.id, "leadId": lead["id"]})

    if imported:
        data_store.save_state(db, principal.org_id, state)
        for item in imported:
            db.add(
                LeadFinderImport(
                    org_id=principal.org_id,
                    search_id=search.id,
                    user_id=principal.user_id,
                    result_id=item["resultId"],
                    lead_id=item["leadId"],
                )
            )
        db.flush()

    return {"imported": len(imported), "skipped": len(rows) - len(imported), "leads": imported}


def normalize_tone(tone: Any) -> str:
    value = _norm(tone).lower()
    for option in ("friendly", "direct", "executive"):
        if option in value:
            return option
    return "professional"


def normalize_goal(goal: Any) -> str:
    value = _norm(goal).lower()
    if "quote" in value:
        return "quote"
    if "partner" in value:
        return "partnership"
    return "intro_call"


def normalize_length(length: Any) -> str:
    value = _norm(length).lower()
    if "long" in value:
        return "long"
    if "medium" in value:
        return "medium"
    return "short"


GOAL_TEXT = {
    "quote": "Ask for shipment volume/routes so you can provide a quote.",
    "partnership": "Propose a logistics partnership and ask for the right person to talk to.",
    "intro_call": "Book a 15-minute intro call this week.",
}

LENGTH_TEXT = {
    "long": "around 180-220 words",
    "medium": "around 120-160 words",
    "short": "around 70-110 words",
}


def _cap(value: Any, limit: int) -> str:
    return _norm(value)[:limit]


def email_prompt(prospect: dict[str, Any], tone: str, goal: str, length: str) -> str:
    contact = prospect.get("contact") or {}
    contact_line = ""
    if contact.get("name"):
        contact_line = contact["name"] + (f" ({contact['title']})" if contact.get("title") else "")

    return f"""You are writing a cold outreach email for {settings.COMPANY_NAME} (a logistics/fleet/freight partner).

Hard rules:
- Do not invent facts. Use only what is provided in the prospect data.
- If the prospect contact is missing, address the email generically (e.g., "Hi there,").
- Keep it specific, respectful, and action-oriented.
- Produce JSON only, exactly: {{ "subject": "...", "body": "..." }}.

Prospect data:
Company: {_cap(prospect.get('companyName'), 160)}
Location: {_cap(prospect.get('location'), 160)}
Website: {_cap(prospect.get('website'), 260)}
Source URL: {_cap(prospect.get('sourceUrl'), 260)}
Contact: {_cap(contact_line, 160)}
Summary: {_cap(prospect.get('summary'), 900)}

Writing style:
Tone: {tone}
Length: {LENGTH_TEXT[length]}
Goal: {GOAL_TEXT[goal]}

Include:
- One sentence showing you understand their context (based on Summary only).
- One clear value proposition for logistics.
- One call-to-action aligned to the goal.
- A simple signature: "{settings.COMPANY_NAME}"."""


def draft_outreach_email(body: dict[str, Any]) -> dict[str, str]:
    prospect = (body or {}).get("prospect")
    if not isinstance(prospect, dict) or not _norm(prospect.get("companyName")):
        raise LeadFinderError("Missing prospect.companyName")

    tone = normalize_tone(body.get("tone") or "professional")
    goal = normalize_goal(body.get("goal") or "intro_call")
    length = normalize_length(body.get("length") or "short")

    payload, raw_text = complete_json(
        None,
        email_prompt(prospect, tone, goal, length),
        temperature=0.4,
        max_tokens=1200,
    )
    if not isinstance(payload, dict) or not payload.get("subject") or not payload.get("body"):
        logger.warning("lead finder: invalid email draft: %s", raw_text[:200])
        raise LeadFinderError("Model did not return valid JSON email draft.", status_code=500)

    return {"subject": str(payload["subject"]).strip(), "body": str(payload["body"]).strip()}
