"""Command line entry point for the OP_CAT indexer."""

import argparse
import logging
import sys

from catindexer import version
from catindexer.lib.script import MatchStrategy, WitnessMatcher
from catindexer.server.env import Env


def build_parser():
    parser = argparse.ArgumentParser(
        prog='catindexer',
        description='Index transactions that spend through OP_CAT tapscripts.')
    parser.add_argument('--version', action='version', version=version)
    parser.add_argument('--bitcoind-url', help='bitcoind host (BITCOIND_URL)')
    parser.add_argument('--bitcoind-port', type=int, help='bitcoind RPC port (BITCOIND_PORT)')
    parser.add_argument('--bitcoind-username', help='RPC user (BITCOIND_USERNAME)')
    parser.add_argument('--bitcoind-password', help='RPC password (BITCOIND_PASSWORD)')
    parser.add_argument('--start-block', type=int,
                        help=f'first height to index (START_BLOCK, '
                             f'default {Env.DEFAULT_START_BLOCK})')
    parser.add_argument('--db-dir', help='index database directory (DB_DIRECTORY)')
    parser.add_argument('--strategy', choices=MatchStrategy.ALL,
                        help='witness matching strategy (MATCH_STRATEGY)')

    sub = parser.add_subparsers(dest='command', required=True)
    sub.add_parser('start_index', help='scan from the checkpoint to tip - 6')
    sub.add_parser('get_checkpoint', help='show the checkpoint and chain tip')
    total = sub.add_parser('get_total_cat_txs', help='count indexed OP_CAT transactions')
    total.add_argument('--end', type=int, help='stop before this height')
    plot = sub.add_parser('plot', help='plot OP_CAT transactions per block')
    plot.add_argument('--output', help='image file (PLOT_FILE)')
    plot.add_argument('--end', type=int, help='stop before this height')
    report = sub.add_parser('generate_report', help='write a JSON report')
    report.add_argument('--output', help='JSON file (REPORT_FILE)')
    report.add_argument('--window', type=int,
                        help='heights before the checkpoint to include (REPORT_WINDOW)')
    sub.add_parser('serve', help='serve the read-only REST API')
    return parser


def make_env(args):
    return Env(
        bitcoind_url=args.bitcoind_url,
        bitcoind_port=args.bitcoind_port,
        bitcoind_username=args.bitcoind_username,
        bitcoind_password=args.bitcoind_password,
        start_block=args.start_block,
        db_dir=args.db_dir,
        match_strategy=args.strategy,
    )


def run(args, env):
    """Run one command against a freshly opened index."""
    from catindexer.server.block_processor import BlockProcessor
    from catindexer.server.cat_index import CatIndex
    from catindexer.server.daemon import Daemon
    from catindexer.server.metrics import init_metrics
    from catindexer.server.report import CatReport
    from catindexer.server.storage import open_storage

    init_metrics(env)
    daemon = Daemon(env)
    db = open_storage(env)
    try:
        cat_index = CatIndex(db, env)
        report = CatReport(cat_index, daemon, env)

        if args.command == 'start_index':
            matcher = WitnessMatcher(env.match_strategy, daemon)
            BlockProcessor(env, cat_index, daemon, matcher).start()
        elif args.command == 'get_checkpoint':
            logging.info(f'checkpoint: {cat_index.get_checkpoint()}')
            logging.info(f'tip: {daemon.get_block_count()}')
        elif args.command == 'get_total_cat_txs':
            total = report.get_total_cat_txs(end=args.end)
            logging.info(f'total cat txs: {total}')
        elif args.command == 'plot':
            report.plot(args.output, end=args.end)
        elif args.command == 'generate_report':
            report.generate_report(args.output, args.window)
        elif args.command == 'serve':
            import uvicorn
            from catindexer.server.rest_api import create_app, set_indexer
            set_indexer(cat_index, report)
            uvicorn.run(create_app(), host=env.rest_host, port=env.rest_port)
    finally:
        db.close()


def main(argv=None):
    log_fmt = Env.default('LOG_FORMAT', '%(levelname)s:%(name)s:%(message)s')
    logging.basicConfig(level=logging.INFO, format=log_fmt)

    args = build_parser().parse_args(argv)
    try:
        logging.getLogger().setLevel(Env.default('LOG_LEVEL', 'INFO').upper())
        logging.info(f'{version} {args.command}')
        env = make_env(args)
        run(args, env)
    except Exception:
        logging.exception(f'{args.command} terminated abnormally')
        return 1
    logging.info(f'{args.command} terminated normally')
    return 0


if __name__ == '__main__':
    sys.exit(main())
