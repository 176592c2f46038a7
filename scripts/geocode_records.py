# Geocode a JSON file of records, resuming from the last checkpoint
from argparse import ArgumentParser
from pathlib import Path
import json
import logging

from colorama import Fore, Style
from pydantic import TypeAdapter
from tqdm import tqdm

from batch_geocoding import GeocodingService, Record, ReportGenerator
from batch_geocoding.settings import Settings

_RECORDS = TypeAdapter(list[Record])


def load_records(path: Path) -> list[Record]:
    return _RECORDS.validate_json(path.read_bytes())


def save_records(path: Path, records: list[Record]) -> None:
    payload = _RECORDS.dump_python(records, mode='json')
    tmp_path = path.with_name(path.name + '.tmp')
    tmp_path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding='utf-8')
    tmp_path.replace(path)


if __name__ == '__main__':
    parser = ArgumentParser()
    parser.add_argument('records', type=Path, help='JSON list of {id, raw_address, name}')
    parser.add_argument('--fresh', '-f', action='store_true', help='ignore the saved checkpoint')
    parser.add_argument('--clear', action='store_true', help='delete cache and checkpoint first')
    parser.add_argument('--batch-size', '-b', type=int)
    parser.add_argument('--delay', '-d', type=float, help='seconds between requests')
    parser.add_argument('--max-retries', '-r', type=int)
    parser.add_argument('--report', type=Path, help='write a CSV report here')
    parser.add_argument('--log-file', type=Path)
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        filename=args.log_file,
    )

    records = load_records(args.records)
    service = GeocodingService(
        record_source=lambda: records,
        on_records_updated=lambda updated: save_records(args.records, updated),
        settings=Settings(),
    )

    if args.clear:
        service.clear_cache_and_checkpoint()
    if any(v is not None for v in (args.delay, args.batch_size, args.max_retries)):
        service.update_config(rate_limit_delay=args.delay, batch_size=args.batch_size, max_retries=args.max_retries)

    started = service.start_run(resume=not args.fresh)
    print(f"Pending: {started['estimate']['pending']} records, about {started['estimate']['minutes']} minutes")

    try:
        with tqdm(total=started['estimate']['pending'], desc='Geocoding') as pbar:
            for event in service.progress_events():
                if event.kind == 'record':
                    pbar.n = event.processed
                    pbar.set_postfix(errors=event.stats.errors, cache=event.stats.cache_hits)
                    pbar.refresh()
    except KeyboardInterrupt:
        print('Stopping after the current record...')
        service.stop()
    service.wait()

    report = service.get_report()
    progress = service.get_progress()
    color = Fore.GREEN if progress['status'] == 'completed' else Fore.RED
    print(f"Run {color}{progress['status']}{Style.RESET_ALL}"
          + (f": {progress['error']}" if progress['error'] else ''))
    print(f"  Total: {report['total']}")
    print(f"  Resolved: {report['resolved_count']}")
    print(f"  Failed: {report['failed_count']}")
    print(f"  Cache hits: {report['cache_hit_count']}")
    print(f"  Success rate: {report['success_rate_percent']}%")

    if args.report:
        n = ReportGenerator.export_csv(records, args.report)
        print(f'Wrote {n} rows to {args.report}')
