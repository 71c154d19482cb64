#!/usr/bin/env python3
"""Build the code graph and FAISS index from a source checkout or extracted code units."""

import argparse
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from autoflow.collaborators import CodeGraphStore, CodeSearchIndex, TextEmbedder, WorkspaceIndexer
from autoflow.config import get_settings


def main():
    settings = get_settings()

    parser = argparse.ArgumentParser(description="Build code graph and FAISS index")
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument(
        "--input",
        type=Path,
        help="Input JSONL file with one code unit per line",
    )
    source.add_argument(
        "--workspace",
        type=Path,
        help="Checked-out repository whose Java sources are parsed",
    )
    parser.add_argument(
        "--repo",
        type=str,
        help="Repository name for --workspace units (default: directory name)",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=settings.index_workers,
        help="Parser threads for --workspace",
    )
    parser.add_argument(
        "--graph",
        type=Path,
        default=settings.graph_path,
        help="Output JSONL file for the code graph",
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=settings.index_dir,
        help="Output directory for index",
    )
    parser.add_argument(
        "--model",
        type=str,
        default=settings.embedding_model,
        help="Sentence transformer model name",
    )

    args = parser.parse_args()

    graph = CodeGraphStore()
    index = CodeSearchIndex(embedder=TextEmbedder(args.model))

    if args.workspace:
        if not args.workspace.is_dir():
            print(f"Error: Workspace not found: {args.workspace}")
            return 1
        repo = args.repo or args.workspace.resolve().name
        print(f"Parsing Java sources in {args.workspace} as '{repo}'...")
        indexer = WorkspaceIndexer(graph, settings=settings.model_copy(update={"index_workers": args.workers}))
        result = indexer.index_workspace(str(args.workspace), repo)
        print(f"Parsed {result.files_processed} files: {result.units_indexed} units, {result.edges_indexed} edges")
        for error in result.errors:
            print(f"  ! {error}")
        units = graph.units_for_repo(repo)
    else:
        if not args.input.exists():
            print(f"Error: Input file not found: {args.input}")
            return 1
        print(f"Loading code units from {args.input}...")
        units = graph.load_jsonl(args.input)
        print(f"Loaded {len(units)} units")

    if not units:
        print("Error: No code units to index")
        return 1

    graph.save_jsonl(args.graph)
    print(f"Saved code graph to {args.graph}")

    print(f"\nBuilding FAISS index with {args.model}...")
    index.build(units)
    print(f"Built index with {index.size} vectors")
    print(f"Embedding dimension: {index.embedder.dimension}")

    index.save(args.output)
    print(f"\nSaved index to {args.output}")

    # Test search
    repo = units[0].repo
    test_query = units[0].to_embedding_text()
    print(f"\nTesting search in {repo} with: '{test_query[:60]}'")
    for match in index.search(index.embedder.embed(test_query), repo_scope=repo, top_n=3):
        print(f"  [{match.score:.3f}] {match.symbol_name}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
