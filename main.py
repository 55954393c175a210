#!/usr/bin/env python3
"""
NYC School Explorer - agentic chat over NYC School Quality Report data.
"""

import argparse
import logging
import sys

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s", stream=sys.stderr
)

#
# NOTE: Keep explorer imports lazy (inside functions) so `--list-tools` does not pull in
# the web stack or the LLM SDKs.
#


def list_tools() -> None:
    from explorer.tools.registry import get_registry

    reg = get_registry()
    print(f"{len(reg.names)} tools:\n")
    for d in reg.descriptors:
        props = sorted((d.parameters.get("properties") or {}).keys())
        print(f"  {d.name}")
        print(f"      {d.description.splitlines()[0] if d.description else ''}")
        if props:
            print(f"      params: {', '.join(props)}")


def run_tool(name: str, args_json: str) -> None:
    """Run one tool directly and print its JSON result."""
    import json

    from explorer.tools.registry import execute_tool

    params = json.loads(args_json or "{}")
    print(json.dumps(execute_tool(name, params), indent=2, ensure_ascii=False, default=str))


def ask(question: str) -> None:
    """Run one chat session in the terminal: text on stdout, tool activity on stderr."""
    import asyncio
    import json

    from explorer.authz.policy import load_chat_policy
    from explorer.chat.runtime_streaming import run_chat_stream
    from explorer.chat.types import ChatMessage

    async def _run() -> None:
        async for ev in run_chat_stream(
            policy=load_chat_policy(),
            messages=[ChatMessage(role="user", content=question)],
        ):
            p = ev.payload
            if ev.event_type == "text_delta":
                print(p.get("text", ""), end="", flush=True)
            elif ev.event_type == "tool_start":
                print(f"\n[tool] {p['name']} {json.dumps(p.get('parameters') or {})}", file=sys.stderr)
            elif ev.event_type == "tool_end":
                print(f"[tool] {p['name']}: {p.get('resultSummary') or p.get('error')}", file=sys.stderr)
            elif ev.event_type == "chart_data":
                print(f"[chart] {p.get('title')} ({len(p.get('data') or [])} points)", file=sys.stderr)
            elif ev.event_type == "done":
                print()
            elif ev.event_type == "suggested_queries":
                for s in p.get("suggestions") or []:
                    print(f"  -> {s['text']} ({s['category']})")
            elif ev.event_type == "evaluation":
                print(f"[evaluation] {p.get('weighted_score')} ({p.get('confidence_level')})", file=sys.stderr)
            elif ev.event_type == "error":
                print(f"\nError: {p.get('error')}", file=sys.stderr)

    asyncio.run(_run())


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Explore NYC school data with a tool-using assistant",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Serve the chat, flag and MCP endpoints
  python main.py --serve --port 8080

  # One question in the terminal
  python main.py --ask "High-poverty schools in Brooklyn with strong growth"

  # Call a tool directly
  python main.py --tool search_schools --args '{"borough": "Bronx", "limit": 5}'
        """,
    )
    parser.add_argument("--serve", action="store_true", help="Run the HTTP server")
    parser.add_argument("--host", default="0.0.0.0", help="Server bind host (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=8080, help="Server listen port (default: 8080)")
    parser.add_argument("--list-tools", action="store_true", help="List the registered tools")
    parser.add_argument("--ask", metavar="QUESTION", help="Ask one question and stream the answer")
    parser.add_argument("--tool", metavar="NAME", help="Run one tool directly (see --list-tools)")
    parser.add_argument("--args", default="{}", help="JSON parameters for --tool (default: {})")

    args = parser.parse_args()

    try:
        if args.serve:
            from explorer.api.server import run as run_server

            run_server(host=args.host, port=args.port)
            return

        if args.list_tools:
            list_tools()
            return

        if args.tool:
            run_tool(args.tool, args.args)
            return

        if args.ask:
            ask(args.ask)
            return

        parser.print_help()

    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        raise


if __name__ == "__main__":
    main()
