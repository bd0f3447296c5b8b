"""LLM-drafted vendor nudges."""

from __future__ import annotations

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.output_parsers import StrOutputParser
from langchain_core.prompts import ChatPromptTemplate
from loguru import logger

from nudgeflow.application.ports.composer import NotificationContext
from nudgeflow.domain.entities.thread import Thread
from nudgeflow.domain.errors import CompositionError
from nudgeflow.infrastructure.notifications.templates import TemplateComposer
from nudgeflow.infrastructure.settings import Settings

VENDOR_NUDGE_SYSTEM = """Write a brief, professional follow-up email for merchant onboarding.

Rules:
- Keep it short (3-4 sentences max)
- Sound natural and human
- Be polite but direct
- Don't use emojis
- Don't mention this is automated
- This is follow-up #{sequence}, adjust tone accordingly (more urgent if higher number)
- Sign as "Best regards,\\n{sender}"
- Output only the email body, no subject line"""

VENDOR_NUDGE_USER = """Write a follow-up email:

To: {vendor_name} at {vendor_address}
From: {sender}
Subject: {subject}
Time since last message: {elapsed}
Follow-up #{sequence}
Our last message: {last_message}

Request an update on the merchant onboarding status. Keep it brief and professional."""


def create_llm(settings: Settings) -> BaseChatModel:
    """Create the appropriate LLM based on settings."""
    provider = settings.llm_provider

    if provider == "local":
        from langchain_openai import ChatOpenAI

        logger.info(f"Initializing local vLLM at {settings.vllm_base_url} with model {settings.vllm_model_name}")
        return ChatOpenAI(
            base_url=settings.vllm_base_url,
            api_key="not-needed",
            model_name=settings.vllm_model_name,
            temperature=settings.llm_temperature,
            max_tokens=200,
        )

    elif provider == "groq":
        from langchain_groq import ChatGroq

        if not settings.groq_api_key:
            raise ValueError("GROQ_API_KEY is required when llm_provider=groq")

        logger.info(f"Initializing Groq LLM with model {settings.llm_model}")
        return ChatGroq(
            api_key=settings.groq_api_key.get_secret_value(),
            model_name=settings.llm_model,
            temperature=settings.llm_temperature,
            max_tokens=200,
        )

    elif provider == "openai":
        from langchain_openai import ChatOpenAI

        if not settings.openai_api_key:
            raise ValueError("OPENAI_API_KEY is required when llm_provider=openai")

        logger.info(f"Initializing OpenAI LLM with model {settings.llm_model}")
        return ChatOpenAI(
            api_key=settings.openai_api_key.get_secret_value(),
            model_name=settings.llm_model,
            temperature=settings.llm_temperature,
            max_tokens=200,
        )

    elif provider == "anthropic":
        from langchain_anthropic import ChatAnthropic

        if not settings.anthropic_api_key:
            raise ValueError("ANTHROPIC_API_KEY is required when llm_provider=anthropic")

        logger.info(f"Initializing Anthropic LLM with model {settings.llm_model}")
        return ChatAnthropic(
            api_key=settings.anthropic_api_key.get_secret_value(),
            model_name=settings.llm_model,
            temperature=settings.llm_temperature,
            max_tokens=200,
        )

    else:
        raise ValueError(f"Unknown LLM provider: {provider}")


class LLMNotificationComposer:
    """Drafts vendor nudges with a chat model; self-reminders stay templated.

    Any model failure is raised as CompositionError so the caller can fall back.
    """

    def __init__(self, llm: BaseChatModel, templates: TemplateComposer | None = None) -> None:
        self.llm = llm
        self.templates = templates or TemplateComposer()
        prompt = ChatPromptTemplate.from_messages(
            [("system", VENDOR_NUDGE_SYSTEM), ("human", VENDOR_NUDGE_USER)]
        )
        self.chain = prompt | self.llm | StrOutputParser()

    def compose_self_reminder(self, thread: Thread, context: NotificationContext) -> str:
        return self.templates.compose_self_reminder(thread, context)

    def compose_vendor_nudge(self, thread: Thread, context: NotificationContext) -> str:
        logger.info(f"🤖 Drafting nudge #{context.sequence} for thread #{thread.id}")
        try:
            text = self.chain.invoke(
                {
                    "sequence": context.sequence,
                    "sender": context.account.display_name,
                    "vendor_name": thread.vendor_name or "the onboarding team",
                    "vendor_address": thread.vendor_address,
                    "subject": thread.subject,
                    "elapsed": context.elapsed,
                    "last_message": context.last_message_preview or "(not available)",
                }
            )
        except Exception as e:
            raise CompositionError(f"LLM draft failed: {e}") from e

        text = (text or "").strip()
        if not text:
            raise CompositionError("LLM returned an empty draft")
        logger.debug(f"Drafted nudge ({len(text)} chars)")
        return text
