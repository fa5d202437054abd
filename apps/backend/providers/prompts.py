"""
Prompt templates for the three extraction capabilities.
"""
from typing import Optional, Tuple

SYSTEM_PROMPT = (
    "You are a precise information extraction engine for job postings. "
    "You answer with JSON only, never with prose or markdown."
)

LIST_FIELDS = """Fields to extract for each posting:
- title: job title (required)
- company: company name (required)
- location: work location, city or province level only
- salary: pay or compensation information
- employmentType: full-time, contract, intern, freelance, ...
- experienceLevel: entry, experienced, any, ...
- sourceUrl: absolute URL of the posting's detail page (starts with http:// or https://)"""

LIST_RULES = """Rules:
1. Respond with a JSON array only. No text before or after it.
2. Use null for missing information.
3. Every item must include title and company.
4. sourceUrl must be an absolute URL.
5. Skip ads, banners and duplicated postings."""

TEXT_TEMPLATE = """Below is pre-processed text from the {site} job listing site.
Postings may be separated by "=== Posting N ===" headers and carry labelled lines
such as "Title:", "Company:", "Location:", "Salary:" and "Link:".

{fields}

{rules}

Text:
{content}"""

HTML_TEMPLATE = """Extract every job posting from the following {site} listing page HTML.

{fields}

{rules}

HTML:
{content}"""

DETAIL_TEMPLATE = """The content below is the detail page of the "{title}" posting at "{company}".
Extract the detailed information.

Fields:
- description: main duties and role summary (summarize the page if there is no explicit section)
- requirements: qualifications, required and preferred skills
- benefits: benefits and working conditions
- salary: only if more specific than "{salary}"
- location: only if more specific than "{location}", city or province level
- deadline: application deadline as YYYY-MM-DD
- employmentType, experienceLevel

Rules:
1. Respond with a single JSON object only.
2. Use null for missing information.
3. deadline must use the YYYY-MM-DD format.

Content:
{content}"""


def build_prompt(
    capability: str,
    content: str,
    site_id: Optional[str] = None,
    base_record=None,
) -> Tuple[str, str]:
    """Return (system, user) prompts for a capability value."""
    site = site_id or 'unknown'
    if capability == 'extract_detail':
        user = DETAIL_TEMPLATE.format(
            title=getattr(base_record, 'title', None) or 'unknown',
            company=getattr(base_record, 'company', None) or 'unknown',
            salary=getattr(base_record, 'salary', None) or 'none',
            location=getattr(base_record, 'location', None) or 'none',
            content=content,
        )
    elif capability == 'extract_from_html':
        user = HTML_TEMPLATE.format(site=site, fields=LIST_FIELDS, rules=LIST_RULES, content=content)
    else:
        user = TEXT_TEMPLATE.format(site=site, fields=LIST_FIELDS, rules=LIST_RULES, content=content)
    return SYSTEM_PROMPT, user
