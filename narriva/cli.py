"""CLI interface: narrate a story file, inspect its segments, list voices."""

import argparse
import asyncio
import logging
import os
import sys

from narriva.config import load_config
from narriva.constants import VERSION
from narriva.models import NarrationOptions, StoryNode
from narriva.narrator import Narrator


def _read_story(file_path: str) -> StoryNode:
    """Load a text file as a story node, or exit with an error."""
    if not os.path.exists(file_path):
        print(f"Error: File not found: {file_path}", file=sys.stderr)
        raise SystemExit(1)

    with open(file_path) as f:
        content = f.read()

    if not content.strip():
        print(f"Error: File is empty: {file_path}", file=sys.stderr)
        raise SystemExit(1)

    node_id = os.path.splitext(os.path.basename(file_path))[0]
    return StoryNode(id=node_id, content=content, metadata={"path": file_path})


def _options_from_args(args, errors: list) -> NarrationOptions:
    def on_progress(progress):
        print(f"  [{progress:4.0%}]", flush=True)

    def on_error(error):
        errors.append(error)
        print(f"Error: {error}", file=sys.stderr)

    return NarrationOptions(
        voice_id=args.voice or "",
        rate=args.rate,
        volume=args.volume,
        use_character_voices=not args.no_character_voices,
        local_voice=args.local_voice,
        on_start=lambda: print("Narrating..."),
        on_progress=on_progress,
        on_end=lambda: print("Done."),
        on_error=on_error,
    )


async def _narrate(narrator: Narrator, node: StoryNode, options: NarrationOptions):
    try:
        await narrator.read_node(node, options)
    except asyncio.CancelledError:
        narrator.cancel()
        raise


def cmd_read(args):
    """Narrate a text file aloud."""
    node = _read_story(args.file)
    config = load_config(args.config)
    narrator = Narrator(config)

    print(f"Story: {node.id} ({len(node.content)} chars)")
    print(f"Remote provider: {config.remote_provider}")

    errors = []
    options = _options_from_args(args, errors)
    try:
        asyncio.run(_narrate(narrator, node, options))
    except KeyboardInterrupt:
        narrator.cancel()
        print("\nCancelled.")
        return
    finally:
        narrator.close()

    if errors:
        raise SystemExit(1)


def cmd_segments(args):
    """Print the attributed segments of a text file with their voices."""
    node = _read_story(args.file)
    config = load_config(args.config)
    narrator = Narrator(config)

    options = NarrationOptions(
        voice_id=args.voice or "",
        use_character_voices=not args.no_character_voices,
    )
    segments = narrator.build_segments(node.content, options)
    for i, seg in enumerate(segments, 1):
        speaker = seg.speaker or "narrator"
        preview = seg.text if len(seg.text) <= 60 else seg.text[:57] + "..."
        print(f"  {i:>3}. {speaker:<15} → {seg.voice:<20} {preview}")
    print(f"\n{len(segments)} segments")


def cmd_voices(args):
    """List the archetype voices and the local platform voices."""
    config = load_config(args.config)
    filter_str = args.filter.lower() if args.filter else None

    archetypes = sorted(config.archetypes.items())
    if filter_str:
        archetypes = [(k, v) for k, v in archetypes if filter_str in k.lower() or filter_str in v.lower()]
    print(f"Archetype voices ({config.remote_provider}):")
    for archetype, voice in archetypes:
        print(f"  {archetype:<15} → {voice}")

    narrator = Narrator(config)
    try:
        local_voices = narrator.get_available_voices()
    finally:
        narrator.close()
    if filter_str:
        local_voices = [v for v in local_voices if filter_str in v.name.lower() or filter_str in v.id.lower()]
    print("Local voices:")
    if not local_voices:
        print("  (none)")
    for v in local_voices:
        langs = ", ".join(v.languages) or "?"
        print(f"  {v.name} [{langs}]")


def main(argv=None):
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="narriva",
        description="Narriva: read interactive stories aloud with a voice per character",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    parser.add_argument("--config", help="Path to a JSON config file")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # read
    read_parser = subparsers.add_parser("read", help="Narrate a story text file")
    read_parser.add_argument("file", help="Path to the story text file")
    read_parser.add_argument("--voice", help="Narrator voice id (default: archetype narrator)")
    read_parser.add_argument("--rate", type=float, default=1.0, help="Speech rate multiplier")
    read_parser.add_argument("--volume", type=float, default=1.0, help="Volume 0.0-1.0")
    read_parser.add_argument("--local-voice", help="Platform voice name for the local engine")
    read_parser.add_argument("--no-character-voices", action="store_true", help="Use one voice for everything")
    read_parser.set_defaults(func=cmd_read)

    # segments
    segments_parser = subparsers.add_parser("segments", help="Show attributed segments and voices")
    segments_parser.add_argument("file", help="Path to the story text file")
    segments_parser.add_argument("--voice", help="Narrator voice id")
    segments_parser.add_argument("--no-character-voices", action="store_true", help="Use one voice for everything")
    segments_parser.set_defaults(func=cmd_segments)

    # voices
    voices_parser = subparsers.add_parser("voices", help="List available voices")
    voices_parser.add_argument("--filter", help="Filter voices by substring")
    voices_parser.set_defaults(func=cmd_voices)

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if not args.command:
        parser.print_help()
        return

    args.func(args)
