"""
Prompt text for the upstream models.

Prompts are configuration: the wording can change freely without touching
routing. Norwegian is the default language (ASSISTANT_LANGUAGE=no); English
variants exist for the system prompts.
"""
from typing import Dict, List, Optional

from tonerweb.services.routing.schema import Mode

IMAGE_ANALYSIS_FALLBACK = (
    "Kunne ikke analysere bildet. Vennligst prøv igjen eller beskriv tonerpatronen manuelt."
)
EMPTY_SEARCH_RESPONSE = "Jeg kunne ikke finne spesifikke produkter. Vennligst prøv igjen."
EMPTY_REASONING_RESPONSE = "Kunne ikke generere analyse. Vennligst prøv igjen."
IMAGE_ONLY_MESSAGE = "Finn produktet på bildet."

SEARCH_PROMPTS: Dict[str, Dict[Mode, str]] = {
    "no": {
        Mode.DEEP_SEARCH: (
            "Du er TonerWeb AI, ekspert på å finne produkter på tonerweb.no.\n"
            "Anbefal kun produkter som finnes på tonerweb.no og oppgi alltid den eksakte "
            "produktside-URL-en (https://tonerweb.no/pv.php?pid=XXXXX).\n"
            "Søk med site:tonerweb.no og merke/modellnummer. Finn aldri på URL-strukturer.\n"
            "Hvis produktet ikke finnes, si det tydelig og foreslå direkte søk "
            "(https://tonerweb.no/search.php?query=...) eller kundeservice "
            "(post@tonerweb.no, 400 22 111).\n"
            "Svar på norsk og vær ærlig om hva som faktisk finnes."
        ),
        Mode.THINK: (
            "Du er TonerWeb AI, som analyserer brukerens behov steg for steg og finner "
            "korrekte produkter på tonerweb.no.\n"
            "Identifiser alltid produkttype først (blekkpatron, tonerpatron, kontorprodukt), "
            "deretter merke og modellnummer. Presenter både originale og kompatible "
            "alternativer med lenke til eksakte produktsider.\n"
            "Svar alltid på norsk og vær ærlig om du ikke finner produkter."
        ),
    },
    "en": {
        Mode.DEEP_SEARCH: (
            "You are the TonerWeb AI Assistant, a specialised product assistant for tonerweb.no.\n"
            "ONLY recommend products that actually exist on tonerweb.no and always return the "
            "exact product page URL. Clearly state if the product is not found and suggest "
            "alternatives that are in stock."
        ),
        Mode.THINK: (
            "You are the TonerWeb AI Assistant, helping users step by step to find the correct "
            "products on tonerweb.no. Explain your reasoning before presenting final "
            "recommendations and always link to the exact product pages."
        ),
    },
}

REASONING_PROMPTS: Dict[str, str] = {
    "no": (
        "Du er TonerWeb AI Assistant, en ekspert på produktanalyse og anbefalinger for "
        "tonerweb.no.\n"
        "Du spesialiserer deg på kompatibilitet, sammenligning av produkter, tekniske "
        "forskjeller (original og kompatibel, kapasitet, sideutbytte) og anbefalinger "
        "basert på bruksmønster.\n"
        "Struktur: analyse av forespørselen, teknisk vurdering, hovedanbefaling med "
        "begrunnelse, alternative valg, praktiske tips.\n"
        "Svar alltid på norsk og vær pedagogisk i forklaringene."
    ),
    "en": (
        "You are the TonerWeb AI Assistant, an expert in product analysis and recommendations "
        "for tonerweb.no. Focus on compatibility, product comparisons, technical differences "
        "and recommendations based on usage. Structure: request analysis, technical "
        "assessment, main recommendation with rationale, alternatives, practical tips."
    ),
}

VISION_PROMPT = """Identifiser produktet på bildet for nøyaktig søk på tonerweb.no.

1. PRODUKTTYPE: blekkpatron (væske), tonerpatron (pulver) eller kontorprodukt (spesifiser).
2. FOR BLEKK/TONER: merke, eksakt modellnummer (med bindestrek og XL/XXL), fargekode,
   original eller kompatibel, størrelse, multipack.
3. FOR KONTORPRODUKTER: type på norsk, merke, materiale, farge, produktkoder.
4. All synlig tekst: produktkoder, strekkoder, "Compatible with...".
5. 5-10 søkeord for tonerweb.no.

Vær ekstremt presis med modellnummer og produkttype. Svar strukturert på norsk."""


def search_system_prompt(mode: Mode, language: str = "no") -> str:
    prompts = SEARCH_PROMPTS.get(language, SEARCH_PROMPTS["no"])
    return prompts[mode]


def reasoning_system_prompt(language: str = "no") -> str:
    return REASONING_PROMPTS.get(language, REASONING_PROMPTS["no"])


def build_search_input(
    message: str,
    image_analysis: Optional[str] = None,
    identifiers: Optional[List[str]] = None,
    alternatives: Optional[List[str]] = None,
) -> str:
    """User turn for the search and unified models."""
    parts = [message.strip() or IMAGE_ONLY_MESSAGE]

    if image_analysis:
        parts.append(
            "BILDANALYSE:\n"
            f"{image_analysis}\n"
            "VIKTIG: Les analysen nøye for å se om dette er BLEKK eller TONER, og søk etter "
            "riktig produkttype basert på merke og modellnummer."
        )
    if identifiers:
        parts.append("Produktkoder i spørsmålet: " + ", ".join(identifiers))
    if alternatives:
        parts.append("Relaterte søkeord: " + ", ".join(alternatives))

    parts.append(
        "Vennligst søk på tonerweb.no og finn de eksakte produkt-URL-ene for varene du "
        "anbefaler. Inkluder klikkbare lenker til hver produktside."
    )
    return "\n\n".join(parts)


def build_reasoning_input(
    message: str,
    search_results: Optional[str] = None,
    image_analysis: Optional[str] = None,
) -> str:
    """User turn for the reasoning model, optionally fed with search results."""
    prompt = f"Brukerens spørsmål: {message.strip() or IMAGE_ONLY_MESSAGE}"
    if search_results:
        prompt += f"\n\nSØKERESULTATER FRA TONERWEB.NO:\n{search_results}"
    if image_analysis:
        prompt += f"\n\nBILDANALYSE:\n{image_analysis}"
    prompt += "\n\nVennligst gi en grundig analyse med steg-for-steg resonnement og konkrete anbefalinger."
    return prompt
