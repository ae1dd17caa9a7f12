from backoffice.app.llm.model.llm_provider import AiUsageRecord, LlmProvider
