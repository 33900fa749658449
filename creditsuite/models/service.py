"""
Service keys: the closed set of AI-backed capabilities a plan can gate.

Every cost table entry, plan permission and generation request refers to a
member of ServiceKey, so an unknown key fails at parse time instead of silently
resolving to "disabled, cost 1".
"""

from enum import Enum
from typing import Dict


class ServiceKey(str, Enum):
    NEWS_GENERATOR = "news_generator"
    TEXT_TO_SPEECH = "text_to_speech"
    COPY_GENERATOR = "copy_generator"
    PROMPT_GENERATOR = "prompt_generator"
    CANVA_STRUCTURE = "canva_structure"
    LANDINGPAGE_GENERATOR = "landingpage_generator"
    INSTITUTIONAL_WEBSITE_GENERATOR = "institutional_website_generator"
    IMAGE_GENERATION = "image_generation"
    SOCIAL_MEDIA_POSTER = "social_media_poster"
    CURRICULUM_GENERATOR = "curriculum_generator"
    N8N_INTEGRATION = "n8n_integration"
    WHATSAPP_CRM = "whatsapp_crm"


SERVICE_LABELS: Dict[ServiceKey, str] = {
    ServiceKey.NEWS_GENERATOR: "GDN Notícias",
    ServiceKey.TEXT_TO_SPEECH: "Texto para Voz",
    ServiceKey.COPY_GENERATOR: "Gerador de Copy",
    ServiceKey.PROMPT_GENERATOR: "Gerador de Prompts",
    ServiceKey.CANVA_STRUCTURE: "Editor Visual (Social Media)",
    ServiceKey.LANDINGPAGE_GENERATOR: "Gerador de Landing Page",
    ServiceKey.INSTITUTIONAL_WEBSITE_GENERATOR: "Site Institucional",
    ServiceKey.IMAGE_GENERATION: "Studio de Arte IA",
    ServiceKey.SOCIAL_MEDIA_POSTER: "Social Media Poster",
    ServiceKey.CURRICULUM_GENERATOR: "Gerador de Currículo",
    ServiceKey.N8N_INTEGRATION: "Integração N8N / Webhooks",
    ServiceKey.WHATSAPP_CRM: "WhatsApp CRM",
}


def label_for(key: ServiceKey) -> str:
    return SERVICE_LABELS.get(key, key.value)
