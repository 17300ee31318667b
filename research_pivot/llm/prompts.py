"""Prompt templates for the semantic analyzers."""

from research_pivot.models import Complexity, Domain, Specialist

_DOMAINS = ", ".join(d.value for d in Domain)
_SPECIALISTS = ", ".join(s.value for s in Specialist)
_COMPLEXITY = ", ".join(c.value for c in Complexity)

CLASSIFICATION_PROMPT = """Classify the research query below.

Query: {query}

Score every domain from 0 to 100 for how central it is to the query.
Domains: {domains}
Complexity tiers: {complexity} (SIMPLE = one narrow question, MODERATE = several facets,
COMPLEX = cross-domain investigation).

Return JSON with exactly these keys:
{{
  "domain_scores": {{"<domain>": <0-100>, ...}},
  "primary_domain": "<domain>",
  "secondary_domains": ["<domain>", ...],
  "complexity": "<tier>",
  "confidence": <0-100>,
  "reasoning": "<one or two sentences>",
  "pivot_scenarios": ["<what a second research wave might need>", ...]
}}"""

PERSPECTIVE_PROMPT = """Design between {min_perspectives} and {max_perspectives} distinct research angles for the query below.
Each angle will be handed to one research worker.

Query: {query}

For each angle give the domain ({domains}), the specialist best suited to it ({specialists}),
your confidence (0-100) that the domain is right, a short rationale, and one to three
information sources (platforms, sites, databases) the worker should consult, each with a reason.
Flag the query as time sensitive if the answer depends on events of the last few months.

Return JSON:
{{
  "perspectives": [
    {{
      "perspective": "<angle>",
      "domain": "<domain>",
      "confidence": <0-100>,
      "specialist": "<specialist>",
      "rationale": "<why this angle matters>",
      "platforms": [{{"name": "<source>", "reason": "<why>"}}]
    }}
  ],
  "complexity": "<{complexity}>",
  "time_sensitive": <true|false>,
  "reasoning": "<how the angles cover the query>"
}}"""


def classification_prompt(query: str) -> str:
    return CLASSIFICATION_PROMPT.format(query=query, domains=_DOMAINS, complexity=_COMPLEXITY)


def perspective_prompt(query: str, min_perspectives: int = 4, max_perspectives: int = 8) -> str:
    return PERSPECTIVE_PROMPT.format(
        query=query,
        domains=_DOMAINS,
        specialists=_SPECIALISTS,
        complexity=" | ".join(c.value for c in Complexity),
        min_perspectives=min_perspectives,
        max_perspectives=max_perspectives,
    )
