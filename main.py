"""
AI Gateway Usage Example

This script demonstrates the call flow of the gateway:
1. Price provider costs with markup and rounding
2. Make chat requests (unary and streaming) and receive usage records
3. Summarize usage per workspace

Run without API keys to see the offline examples; set ANTHROPIC_API_KEY
(or configure config.yaml) to run the live ones.
"""

import asyncio
import os

from ai_gateway import (
    AIGateway,
    ChatOptions,
    ConfigManager,
    GatewayError,
    Message,
    PricingEngine,
    StreamTokenType,
    UsageRecord,
    apply_billing_markup,
    billing_by_workspace,
    create_gateway,
)


def pricing_example():
    """
    Pricing example.

    Demonstrates:
    - Looking up the pricing rule for a model
    - Applying the 5x markup rounded up to $0.25
    - Fallback pricing for an unlisted model
    """
    print("=" * 60)
    print("Pricing Example")
    print("=" * 60)

    engine = PricingEngine.from_config(ConfigManager())
    cost = engine.cost("anthropic", "claude-3-5-sonnet-20241022", 1000, 500)
    breakdown = apply_billing_markup(cost, markup=5.0, increment=0.25)

    print(f"\nclaude-3-5-sonnet, 1000 in / 500 out:")
    print(f"  Provider Cost: ${breakdown.provider_cost:.6f}")
    print(f"  Billed Amount: ${breakdown.billed_amount:.2f}")
    print(f"  Margin: {breakdown.margin_percent:.1f}%")

    fallback = engine.get_pricing_rule("openai", "some-new-model")
    print(f"\nUnlisted OpenAI model priced as {fallback.model}: "
          f"${fallback.input_cost_per_1m}/1M in, ${fallback.output_cost_per_1m}/1M out")


def workspace_billing_example(records: list[UsageRecord]):
    """Group collected usage records by workspace."""
    print("\n" + "=" * 60)
    print("Workspace Billing Example")
    print("=" * 60)

    if not records:
        print("\nNo usage records collected.")
        return

    for workspace_id, billing in billing_by_workspace(records).items():
        print(f"\n{workspace_id}:")
        print(f"  Requests: {billing.record_count}")
        print(f"  Billed: ${billing.total_billed:.2f}")
        print(f"  Provider Cost: ${billing.total_provider_cost:.6f}")


async def chat_example(gateway: AIGateway):
    """
    Chat example.

    Demonstrates:
    - A unary chat call with workspace attribution
    - A streaming chat call ending in a usage token
    """
    print("\n" + "=" * 60)
    print("Chat Example")
    print("=" * 60)

    messages = [Message(role="user", content="What is the capital of France?")]
    options = ChatOptions(workspace_id="ws_demo", project_id="proj_demo")

    try:
        response = await gateway.chat(messages, options)
        print(f"\nResponse: {response.content[:200]}")
        print(f"Provider: {response.provider} / {response.model}")
        print(f"Tokens: {response.usage.input_tokens} in, {response.usage.output_tokens} out")
        print(f"Billed: ${response.record.billed_amount:.2f}")

        print("\nStreaming: ", end="")
        async for token in gateway.stream_chat(messages, options):
            if token.type is StreamTokenType.TOKEN:
                print(token.content, end="", flush=True)
            elif token.type is StreamTokenType.DONE:
                print(f"\n[done] billed ${token.record.billed_amount:.2f}")
            elif token.type is StreamTokenType.ERROR:
                print(f"\n[error] {token.error}")
    except GatewayError as e:
        print(f"Gateway Error: {e}")


async def main():
    """Run all examples."""
    print("\n" + "=" * 60)
    print("AI Gateway - Usage Examples")
    print("=" * 60)

    pricing_example()

    records: list[UsageRecord] = []
    if os.getenv("ANTHROPIC_API_KEY") or os.path.exists("config.yaml"):
        gateway = create_gateway(on_usage=records.append)
        try:
            await chat_example(gateway)
        finally:
            await gateway.aclose()
    else:
        print("\nSkipping live chat: set ANTHROPIC_API_KEY or provide config.yaml.")

    workspace_billing_example(records)


if __name__ == "__main__":
    asyncio.run(main())
