#!/usr/bin/env python3
"""Command-line interface for the textdewarp package."""

import argparse
import logging
import sys
from pathlib import Path

from textdewarp.core.pipeline import DocumentDewarpPipeline
from textdewarp.models import COLLECTION_CONFIGS

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(description='Text line based page dewarping')
    parser.add_argument(
        '--input_dir',
        type=Path,
        required=True,
        help='Input directory with page images, in page order by file name'
    )
    parser.add_argument(
        '--output_dir',
        type=Path,
        required=True,
        help='Output directory for dewarped images'
    )
    parser.add_argument(
        '--preset',
        choices=sorted(COLLECTION_CONFIGS),
        default='default',
        help='Model collection preset (default: default)'
    )
    parser.add_argument('--sampling', type=int, help='Disparity sampling stride in pixels')
    parser.add_argument('--redfactor', type=int, choices=[1, 2], help='Build on 2x reduced pages')
    parser.add_argument('--minlines', type=int, help='Minimum long text lines for a model')
    parser.add_argument('--maxdist', type=int, help='Maximum page distance for a reference model')
    parser.add_argument(
        '--no_useboth',
        action='store_true',
        help='Only apply vertical disparity'
    )
    parser.add_argument(
        '--check_columns',
        action='store_true',
        help='Skip horizontal disparity on multi-column pages'
    )
    parser.add_argument('--workers', type=int, help='Threads used to build models')
    parser.add_argument(
        '--device',
        choices=['cuda', 'cpu'],
        help='Device to run resampling on (default: auto-detect)'
    )
    return parser


def main(argv=None):
    """Main function for command line interface."""
    args = build_parser().parse_args(argv)

    config = {
        name: getattr(args, name)
        for name in ('sampling', 'redfactor', 'minlines', 'maxdist')
        if getattr(args, name) is not None
    }
    config['useboth'] = not args.no_useboth
    config['check_columns'] = args.check_columns

    try:
        # Initialize pipeline
        pipeline = DocumentDewarpPipeline(
            preset=args.preset,
            device=args.device,
            max_workers=args.workers,
            **config
        )

        # Process images
        pipeline.process_directory(
            input_dir=args.input_dir,
            output_dir=args.output_dir
        )

    except Exception as e:
        logger.error(f"Pipeline failed: {str(e)}")
        sys.exit(1)


if __name__ == "__main__":
    main()
