# --------------------------- bizbot/services/llm/config_generator.py ----------------------------
"""
Bizbot · Automation Configuration Generator

OVERVIEW:
Turns a BusinessProfile (what the owner typed at signup) into the
AutomationConfig that drives the bot: system prompt, dispatchable actions,
response templates, business info and integration flags.

WORKFLOW:
1. Build a generation prompt embedding the profile
2. Call the LLM once (non-streaming)
3. Extract the first JSON object from the free-text answer
4. Validate it into an AutomationConfig
5. On any failure, build the static per-business-type fallback

BUSINESS LOGIC:
- Bot creation must never fail because the LLM is down or chatty
- The fallback carries the caller's automation types and calendar flag so
  the result is indistinguishable in shape from an LLM-produced config

DEPENDENCIES:
- Environment variables: DEEPSEEK_API_KEY, DEEPSEEK_BASE_URL, LLM_MODEL
- Input: BusinessProfile
- Output: AutomationConfig (never None)
"""

# ─── Standard-library imports ───────────────────────────────────────────
import logging
from typing import Any, Dict

# ─── Local imports ──────────────────────────────────────────────────────
from bizbot.config import settings
from bizbot.errors import ExternalServiceFailure, ValidationFailure
from bizbot.models import Action, AutomationConfig, BusinessProfile, BusinessType
from bizbot.services.llm.client import build_chat_model, complete
from bizbot.utils.json_extract import extract_json_object

logger = logging.getLogger(__name__)

# ╔══════════ 1. Fallback tables ═══════════════════════════════════════════

DEFAULT_PROFILE_KEY = "default"

FALLBACK_PROFILES: Dict[str, Dict[str, Any]] = {
    BusinessType.BARBERSHOP.value: {
        "system_prompt": (
            "Eres el asistente virtual de una barbería profesional. Eres amigable, "
            "profesional y conoces todos los servicios. Ayudas a agendar citas, "
            "respondes consultas sobre precios y servicios y haces seguimiento a "
            "los clientes. Siempre confirmas fecha y hora cuando agendas."
        ),
        "services": ["Corte de cabello", "Afeitada", "Arreglo de barba",
                     "Tratamiento capilar", "Tintura"],
        "schedule": "Lunes a Sábado 8AM-7PM, Domingo 9AM-5PM",
    },
    BusinessType.RESTAURANT.value: {
        "system_prompt": (
            "Eres el asistente virtual de un restaurante. Eres cálido, profesional "
            "y conoces el menú completo. Ayudas con reservas, pedidos para llevar, "
            "información del menú y horarios. Siempre confirmas el número de "
            "personas y la fecha y hora de las reservas."
        ),
        "services": ["Reservas", "Pedidos para llevar", "Información del menú",
                     "Eventos especiales"],
        "schedule": "Lunes a Domingo 11AM-10PM",
    },
    BusinessType.RETAIL.value: {
        "system_prompt": (
            "Eres el asistente virtual de una tienda. Eres amable, servicial y "
            "conoces todos los productos. Ayudas con consultas de productos, "
            "disponibilidad, precios y el proceso de compra. Capturas los datos "
            "de los clientes interesados."
        ),
        "services": ["Productos variados", "Consultas de precio", "Disponibilidad",
                     "Compras"],
        "schedule": "Lunes a Sábado 9AM-8PM",
    },
    DEFAULT_PROFILE_KEY: {
        "system_prompt": (
            "Eres el asistente virtual de un pequeño negocio. Eres amable y "
            "profesional. Respondes preguntas sobre los servicios, precios y "
            "horarios, ayudas a agendar citas y tomas los datos de contacto de "
            "los clientes interesados."
        ),
        "services": ["Atención al cliente", "Información de servicios", "Citas"],
        "schedule": "Lunes a Viernes 8AM-6PM",
    },
}

FALLBACK_ACTIONS = [
    {
        "name": "schedule_appointment",
        "description": "Agendar una cita o reserva",
        "trigger_words": ["cita", "reserva", "agendar", "hora", "cuándo"],
        "required_parameters": ["fecha", "hora", "servicio", "nombre"],
    },
    {
        "name": "check_price",
        "description": "Consultar precios de servicios",
        "trigger_words": ["precio", "cuánto cuesta", "costo", "tarifa"],
        "required_parameters": ["servicio"],
    },
    {
        "name": "check_availability",
        "description": "Verificar disponibilidad",
        "trigger_words": ["disponible", "espacio", "abierto"],
        "required_parameters": ["fecha", "hora"],
    },
]

DEFAULT_RESPONSE_TEMPLATES = {
    "greeting": "¡Hola! 👋 Bienvenido a nuestro servicio. ¿En qué puedo ayudarte hoy?",
    "goodbye": "¡Gracias por contactarnos! 😊 Si necesitas algo más, aquí estoy para ayudarte.",
    "help": ("Puedo ayudarte con: citas/reservas, información de precios, "
             "disponibilidad y consultas generales. ¿Qué necesitas?"),
    "error": ("Lo siento, hubo un problema procesando tu solicitud. Por favor "
              "intenta de nuevo o contacta a soporte."),
}

GENERATOR_SYSTEM_PROMPT = (
    "You are an expert in WhatsApp automation for small businesses. "
    "You produce precise, effective bot configurations as a single JSON object."
)


# ╔══════════ 2. Configuration Generator ═════════════════════════════════════

class ConfigGenerator:
    """
    LLM-backed automation configuration generator with a deterministic fallback.

    generate() never raises: failures are logged and the fallback is returned.
    """

    def __init__(self, llm=None, temperature: float = settings.GENERATOR_TEMPERATURE):
        self.llm = llm or build_chat_model(temperature, settings.GENERATOR_MAX_TOKENS)

    def generate(self, profile: BusinessProfile) -> AutomationConfig:
        prompt = self._build_generation_prompt(profile)
        try:
            raw = complete(self.llm, GENERATOR_SYSTEM_PROMPT, prompt)
            config = self._parse_generated_config(raw, profile)
            logger.info(f"Generated automation config for {profile.business_type.value} "
                        f"({len(config.available_actions)} actions)")
            return config
        except (ExternalServiceFailure, ValidationFailure) as e:
            logger.warning(f"Config generation failed, using fallback for "
                           f"{profile.business_type.value}: {e}")
            return self.build_fallback_config(profile)

    def _build_generation_prompt(self, profile: BusinessProfile) -> str:
        automation_types = ", ".join(profile.automation_type_values)
        calendar_line = ("Requires Google Calendar integration" if profile.connect_calendar
                         else "Does not require Google Calendar")
        calendar_json = "true" if profile.connect_calendar else "false"

        prompt = f"""
        Create a detailed WhatsApp bot configuration for this business:

        Business type: {profile.business_type.value}
        Description: {profile.description}
        Required automation types: {automation_types}
        {calendar_line}

        Return a JSON object with exactly this structure:
        {{
          "system_prompt": "Detailed prompt defining the bot's personality and behaviour",
          "automation_types": ["automation types"],
          "available_actions": [
            {{
              "name": "snake_case_action_name",
              "description": "what the action does",
              "trigger_words": ["words that trigger this action"],
              "required_parameters": ["parameters the bot must collect"]
            }}
          ],
          "response_templates": {{
            "greeting": "Welcome message",
            "goodbye": "Goodbye message",
            "help": "Help message",
            "error": "Error message"
          }},
          "business_info": {{
            "name": "Business name",
            "type": "{profile.business_type.value}",
            "services": ["main services"],
            "contact_info": "Contact information",
            "schedule": "Opening hours"
          }},
          "integrations": {{
            "google_calendar": {calendar_json},
            "crm": true,
            "notifications": true
          }}
        }}

        The bot must:
        1. Sound natural and professional in Colombian Spanish
        2. Understand the specific business context
        3. Ask relevant questions to gather information
        4. Offer the user clear options
        5. Handle errors gracefully
        6. Be persuasive but not aggressive

        Respond ONLY with the JSON, no additional explanation.
        """
        return prompt.strip()

    def _parse_generated_config(self, raw: str, profile: BusinessProfile) -> AutomationConfig:
        data = extract_json_object(raw)
        config = AutomationConfig.from_dict(data)

        # Fill template keys the model skipped so downstream lookups never miss
        for key, text in DEFAULT_RESPONSE_TEMPLATES.items():
            config.response_templates.setdefault(key, text)
        config.integrations.setdefault("google_calendar", profile.connect_calendar)
        if not config.automation_types:
            config.automation_types = profile.automation_type_values
        return config

    @staticmethod
    def build_fallback_config(profile: BusinessProfile) -> AutomationConfig:
        """Static per-business-type configuration; the default entry covers every other type."""
        canned = FALLBACK_PROFILES.get(profile.business_type.value,
                                       FALLBACK_PROFILES[DEFAULT_PROFILE_KEY])
        name = " ".join(profile.description.split()[:3]) or "Mi Negocio"

        return AutomationConfig(
            system_prompt=canned["system_prompt"],
            automation_types=profile.automation_type_values,
            available_actions=[Action.from_dict(a) for a in FALLBACK_ACTIONS],
            response_templates=dict(DEFAULT_RESPONSE_TEMPLATES),
            business_info={
                "name": name,
                "type": profile.business_type.value,
                "services": list(canned["services"]),
                "contact_info": "WhatsApp Business",
                "schedule": canned["schedule"],
            },
            integrations={
                "google_calendar": profile.connect_calendar,
                "crm": True,
                "notifications": True,
            },
        )


def generate_bot_config(profile: BusinessProfile) -> AutomationConfig:
    """Convenience wrapper that builds a generator with the configured model."""
    return ConfigGenerator().generate(profile)
