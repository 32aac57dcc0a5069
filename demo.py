"""
Interactive CLI Demo
====================
Talk to the graph agent about the sample "NBA Stats Pipeline" workflow.

Usage:
    python demo.py

Needs one provider key in the environment (DEEPSEEK_API_KEY, OPENAI_API_KEY,
ANTHROPIC_API_KEY or GROQ_API_KEY). Set AI_DEBUG=true to see retrieval and
tool events.

Suggested conversations:

  Retrieval + read tools:
    "What does the fetch-api node do?"
    "Which nodes are disconnected from the main flow?"
    "List the node types I can use"

  Human-in-the-Loop (interrupt + resume):
    "Add a logger node after filter-active"   ← agent pauses on the proposal
    "yes"                                     ← applies it to the graph
    (or "no", or any other text to reject with that feedback)

  Viewer role:
    start with --viewer; proposals are refused
"""
import asyncio
import logging
import sys

from graph_agent import GraphAgent, ThreadStore
from graph_agent.hitl import describe_proposed_action, is_confirmation
from graph_agent.providers import create_embedding_provider_from_config, create_llm_provider_from_config
from graph_agent.sample_data import SAMPLE_GRAPH_KEY, build_sample_data_source
from graph_agent.thread_store import AIThread
from graph_agent.token_tracker import get_token_tracker


def new_thread(threads: ThreadStore, agent: GraphAgent) -> AIThread:
    return AIThread(
        thread_id=threads.generate_thread_id(),
        graph_key=SAMPLE_GRAPH_KEY,
        workspace="demo",
        user_id="cli",
        agent=agent,
    )


def show(result: dict) -> None:
    for call in result["tool_calls"]:
        print(f"  [tool] {call['name']} {call['args']}")
    if result["message"]:
        print(f"\nAgent: {result['message']}")
    if result["type"] == "interrupt":
        print("\n  [Paused, waiting for your confirmation]\n")
        print(describe_proposed_action(result["proposed_action"]))
    print()


async def main():
    logging.basicConfig(level=logging.WARNING)
    role = "viewer" if "--viewer" in sys.argv else "editor"

    llm = create_llm_provider_from_config()
    if llm is None:
        print("No LLM API key found. Set DEEPSEEK_API_KEY, OPENAI_API_KEY, ANTHROPIC_API_KEY or GROQ_API_KEY.")
        return

    data_source = build_sample_data_source()
    embeddings  = create_embedding_provider_from_config()

    print("\n" + "=" * 60)
    print("  Workflow Graph Assistant")
    print("  GraphRAG + Human-in-the-Loop Demo")
    print("=" * 60)
    print(f"\nGraph: {SAMPLE_GRAPH_KEY} (NBA Stats Pipeline)   role: {role}")
    print(f"Model: {llm.get_provider_name()} / {llm.get_model()}")
    print("\nType 'quit' to exit, 'new' to start a fresh thread, 'usage' for token costs.\n")

    # in_memory=True: demo threads are ephemeral, no database file left behind.
    threads = ThreadStore(in_memory=True)
    await threads.init()

    def make_agent() -> GraphAgent:
        return GraphAgent(SAMPLE_GRAPH_KEY, data_source, llm, role=role, embedding_provider=embeddings)

    thread = new_thread(threads, make_agent())
    await threads.set(thread)
    print(f"Thread: {thread.thread_id}\n")

    try:
        while True:
            try:
                user_input = input("You: ").strip()
            except (EOFError, KeyboardInterrupt):
                print("\n\nGoodbye!")
                break

            if not user_input:
                continue

            command = user_input.lower()
            if command == "quit":
                print("\nGoodbye!")
                break
            if command == "usage":
                print("\n" + get_token_tracker().format_summary() + "\n")
                continue
            if command == "new":
                thread = new_thread(threads, make_agent())
                await threads.set(thread)
                print(f"\n[New thread: {thread.thread_id}]\n")
                continue

            agent = thread.agent
            if agent.has_pending_interrupt():
                decision = is_confirmation(user_input)
                feedback = None if decision is not None else user_input
                result   = await agent.resume_conversation(bool(decision), feedback)
            else:
                result = await agent.chat(user_input)

            thread.touch()
            await threads.save(thread.thread_id)
            show(result)

    finally:
        await threads.close()


if __name__ == "__main__":
    asyncio.run(main())
