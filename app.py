#!/usr/bin/env python3
"""
Study RAG - Maintenance Entry Point
Index study resources and inspect retrieval from the command line.
"""
import sys
import json
import uuid
import logging
import argparse
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from config import load_config
from study_rag import RAGError, Resource, create_components


def setup_logging(debug: bool = False):
    """Configure logging for the application."""
    level = logging.DEBUG if debug else logging.INFO

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stderr),
            logging.FileHandler('study_rag.log', mode='a')
        ],
        force=True
    )

    # Reduce noise from third-party libraries
    logging.getLogger('urllib3').setLevel(logging.WARNING)
    logging.getLogger('sentence_transformers').setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Study RAG - resource indexing and retrieval',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python app.py ingest notes.pdf --module algo-101
  python app.py ingest https://example.com/syllabus.html --title Syllabus
  python app.py search "how do hash tables resolve collisions" --module algo-101
  python app.py context "what is dynamic programming"
  python app.py process-pending
  python app.py stats

Environment Variables:
  EMBEDDING_PROVIDER     sentence-transformers or ollama (default: sentence-transformers)
  EMBEDDING_MODEL        Local model (default: sentence-transformers/all-mpnet-base-v2)
  OLLAMA_BASE_URL        Ollama API URL (default: http://localhost:11434)
  OLLAMA_EMBED_MODEL     Ollama embedding model (default: nomic-embed-text)
  VECTOR_STORE_PATH      SQLite database file (default: data/vector_store.db)
  DEBUG                  Enable debug mode (true/false)
        """
    )

    parser.add_argument(
        '--debug', '-d',
        action='store_true',
        help='Enable debug mode'
    )

    subparsers = parser.add_subparsers(dest='command', required=True)

    ingest = subparsers.add_parser('ingest', help='Index a file, URL or inline text')
    ingest.add_argument('source', help='Local path, file:// or http(s) URL')
    ingest.add_argument('--title', help='Resource title (default: file name)')
    ingest.add_argument('--resource-id', help='Resource ID (default: random UUID)')
    ingest.add_argument('--module', '--scope', dest='module_id', help='Module the resource belongs to')
    ingest.add_argument('--mime-type', help='Declared MIME type')
    ingest.add_argument('--user-id', help='Owning user')
    ingest.add_argument('--session-id', help='Owning anonymous session')
    ingest.add_argument('--inline', action='store_true', help='Treat source as the text itself')

    search = subparsers.add_parser('search', help='Show ranked chunks for a query')
    search.add_argument('query')
    search.add_argument('--module', '--scope', dest='module_id', help='Only search this module')
    search.add_argument('--limit', '-k', type=int, help='Maximum number of results')

    context = subparsers.add_parser('context', help='Show the prompt context for a query')
    context.add_argument('query')
    context.add_argument('--module', '--scope', dest='module_id', help='Only search this module')
    context.add_argument('--limit', '-k', type=int, help='Maximum number of chunks')

    remove = subparsers.add_parser('remove', help='Delete a resource and its chunks')
    remove.add_argument('resource_id')

    subparsers.add_parser('process-pending', help='Index every resource not indexed yet')
    subparsers.add_parser('stats', help='Show vector store statistics')

    return parser


def cmd_ingest(components, args) -> int:
    if args.inline:
        resource = Resource(
            id=args.resource_id or str(uuid.uuid4()),
            title=args.title or "Inline text",
            type="text",
            content=args.source,
            mime_type=args.mime_type,
            user_id=args.user_id,
            session_id=args.session_id,
            module_id=args.module_id
        )
    else:
        resource = Resource(
            id=args.resource_id or str(uuid.uuid4()),
            title=args.title or Path(args.source).stem or args.source,
            file_url=args.source,
            mime_type=args.mime_type,
            user_id=args.user_id,
            session_id=args.session_id,
            module_id=args.module_id
        )

    result = components.ingestor.process_resource(resource)
    print(f"✓ Indexed {resource.title} as {result.resource_id}")
    print(f"  Chunks: {result.num_chunks}")
    print(f"  Dimension: {result.dimension}")
    return 0


def cmd_search(components, args) -> int:
    results = components.retriever.search(args.query, scope_id=args.module_id, limit=args.limit)

    if not results:
        print("No relevant chunks found.")
        return 0

    for i, result in enumerate(results, 1):
        preview = result.content[:200].replace('\n', ' ')
        print(f"{i}. [{result.score:.3f}] {result.resource_title} ({result.chunk_id})")
        print(f"   {preview}")
    return 0


def cmd_context(components, args) -> int:
    response = components.retriever.retrieve_context(
        args.query, scope_id=args.module_id, limit=args.limit
    )

    if response.error:
        print(f"⚠️  Retrieval failed, answering without context: {response.error}")

    print(response.context or "(no context)")
    print()
    print(response.get_source_info())
    return 0


def cmd_remove(components, args) -> int:
    if components.ingestor.remove_resource(args.resource_id):
        print(f"✓ Removed {args.resource_id}")
        return 0

    print(f"Resource not found: {args.resource_id}")
    return 1


def cmd_process_pending(components, args) -> int:
    count = components.ingestor.process_pending_resources()
    print(f"✓ Indexed {count} pending resources")
    return 0


def cmd_stats(components, args) -> int:
    stats = components.vector_store.get_stats()
    stats['embedding_cache'] = components.embedding_provider.get_cache_stats()
    print(json.dumps(stats, indent=2))
    return 0


COMMANDS = {
    'ingest': cmd_ingest,
    'search': cmd_search,
    'context': cmd_context,
    'remove': cmd_remove,
    'process-pending': cmd_process_pending,
    'stats': cmd_stats,
}


def main(argv=None):
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    # Load configuration
    config = load_config()

    # Setup logging
    setup_logging(args.debug or config.debug)

    logger = logging.getLogger(__name__)

    if not config.validate():
        print("\n❌ Error: invalid configuration, see log for details")
        sys.exit(1)

    components = create_components(config)

    try:
        exit_code = COMMANDS[args.command](components, args)
    except RAGError as e:
        logger.error(f"{args.command} failed: {e}")
        print(f"\n❌ Error: {e}")
        exit_code = 1
    except ValueError as e:
        print(f"\n❌ Error: {e}")
        exit_code = 2
    finally:
        components.close()

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
