import argparse
import logging
import os

import pandas as pd

from cmhc.defaults import PipelineConfig, args_info
from cmhc.partition import compute_thresholds, partition_dates, period_tag
from cmhc.stations import StationDB
from cmhc.utils import load_credentials, local_to_blob, setup_logging

logger = logging.getLogger('cmhc.partition_dates')


def return_parser():
    parser = argparse.ArgumentParser(description='Split clean dates into training and testing periods.')
    parser.add_argument('--station',
        default=args_info["station"]["default"],
        type=args_info["station"]["type"],
        choices=args_info["station"]["choices"],
        help=args_info["station"]["help"])
    parser.add_argument('--start-date',
        default=args_info["start_date"]["default"],
        type=args_info["start_date"]["type"],
        help=args_info["start_date"]["help"])
    parser.add_argument('--end-date',
        default=args_info["end_date"]["default"],
        type=args_info["end_date"]["type"],
        help=args_info["end_date"]["help"])
    parser.add_argument('--train-start',
        default=args_info["train_start"]["default"],
        type=args_info["train_start"]["type"],
        help=args_info["train_start"]["help"])
    parser.add_argument('--train-end',
        default=args_info["train_end"]["default"],
        type=args_info["train_end"]["type"],
        help=args_info["train_end"]["help"])
    parser.add_argument('--test-start',
        default=args_info["test_start"]["default"],
        type=args_info["test_start"]["type"],
        help=args_info["test_start"]["help"])
    parser.add_argument('--test-end',
        default=args_info["test_end"]["default"],
        type=args_info["test_end"]["type"],
        help=args_info["test_end"]["help"])
    parser.add_argument('--seasonal',
        action=args_info["seasonal"]["action"],
        help=args_info["seasonal"]["help"])
    parser.add_argument('--compute-thresholds',
        action=args_info["compute_thresholds"]["action"],
        help=args_info["compute_thresholds"]["help"])
    parser.add_argument('--discharge-dir',
        default=args_info["discharge_dir"]["default"],
        type=args_info["discharge_dir"]["type"],
        help=args_info["discharge_dir"]["help"])
    parser.add_argument('--roi-dir',
        default=args_info["roi_dir"]["default"],
        type=args_info["roi_dir"]["type"],
        help=args_info["roi_dir"]["help"])
    parser.add_argument('--out-dir',
        default=args_info["out_dir"]["default"],
        type=args_info["out_dir"]["type"],
        help=args_info["out_dir"]["help"])
    parser.add_argument('--upload',
        action=args_info["upload"]["action"],
        help=args_info["upload"]["help"])
    parser.add_argument('--container',
        default=args_info["container"]["default"],
        type=args_info["container"]["type"],
        help=args_info["container"]["help"])
    parser.add_argument('--credentials',
        default=args_info["credentials"]["default"],
        type=args_info["credentials"]["type"],
        help=args_info["credentials"]["help"])
    parser.add_argument('--log-level',
        default=args_info["log_level"]["default"],
        type=args_info["log_level"]["type"],
        choices=args_info["log_level"]["choices"],
        help=args_info["log_level"]["help"])
    return parser

if __name__ == "__main__":

    args = return_parser().parse_args()
    setup_logging(args.log_level)

    needs_credentials = args.upload or args.discharge_dir.startswith('az://')
    storage_options = load_credentials(args.credentials) if needs_credentials else None
    config = PipelineConfig.from_args(args, storage_options)

    ds = StationDB(args.roi_dir, storage_options=storage_options)
    stations = [args.station] if args.station else ds.names
    train_tag = period_tag(config.train_period)
    test_tag = period_tag(config.test_period)
    y0, y1 = config.start_date[:4], config.end_date[:4]

    written = []
    for station in stations:
        try:
            src = f'{args.out_dir}/clean_dates_{station.upper()}_{y0}_{y1}.csv'
            df = pd.read_csv(src)
            train, test = partition_dates(df, config.train_period, config.test_period)
            logger.info(f'{station}: {len(train)} training and {len(test)} testing dates')

            out_train = f'{args.out_dir}/dates_train_{station.lower()}_{train_tag}.csv'
            out_test = f'{args.out_dir}/dates_test_{station.lower()}_{test_tag}.csv'
            train.to_csv(out_train, index=False)
            test.to_csv(out_test, index=False)
            written += [out_train, out_test]

            if args.compute_thresholds:
                ds.get_station_data(station)
                lookup = ds.station[station].load_discharge(args.discharge_dir, storage_options)
                thresholds = compute_thresholds(train, lookup, station, seasonal=config.seasonal)
                out_thr = f'{args.out_dir}/thresholds_{station.lower()}_{train_tag}.csv'
                thresholds.to_csv(out_thr, index=False)
                written.append(out_thr)
        except FileNotFoundError as e:
            logger.error(f"Source file not found for station {station}: {e}. Skipping...")
        except (KeyError, ValueError) as e:
            logger.error(f"Could not partition dates for station {station}: {e}. Skipping...")

    if args.upload:
        for f in written:
            local_to_blob(args.container, f, f'dates/{os.path.basename(f)}', storage_options)
    logger.info("Done!")
