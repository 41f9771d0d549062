"""Intent resolution — NLU client, local keyword matcher, resolver."""

from hearth.intent.matcher import LocalIntentMatcher
from hearth.intent.models import Intent, IntentSource
from hearth.intent.nlu import NLUClient, NLUResult
from hearth.intent.resolver import IntentResolver

__all__ = [
    "Intent",
    "IntentResolver",
    "IntentSource",
    "LocalIntentMatcher",
    "NLUClient",
    "NLUResult",
]
