#!/usr/bin/env python3
import argparse
import os.path
import time

from MoireTable import (
    Preset, OutFormat, DEFAULT_BASENAME, render_table_mode, save_image
)


def main():
    args_parser = argparse.ArgumentParser()
    args_parser.add_argument('--format',
                             choices=[f.value for f in OutFormat],
                             default=None,
                             help='Which format to render (all by default)')
    example_presets = sorted(Preset.example_names())
    args_parser.add_argument('--preset',
                             choices=example_presets,
                             default=None,
                             help='Which surface preset (all by default)')
    cli_args = args_parser.parse_args()
    base_dir = os.path.relpath('examples/')
    os.makedirs(base_dir, exist_ok=True)
    out_formats = [next(f for f in OutFormat if f.value == cli_args.format)] if cli_args.format else OutFormat
    for preset_name in ([cli_args.preset] if cli_args.preset else example_presets):
        try:
            preset = Preset.load(preset_name)
        except ValueError as e:
            print(f'Error loading {preset_name}: {e}; Skipping')
            continue
        print(f'Building example outputs for: {preset.describe()}')

        for out_format in out_formats:
            start_time = time.process_time()
            table_img = render_table_mode(preset, out_format)
            table_filename = os.path.join(base_dir, f'{preset_name}.{DEFAULT_BASENAME}')
            print(f' Render time: {round(time.process_time() - start_time, 3)}')
            save_image(table_img, table_filename, out_format)
            print(f' {out_format.name} output for: {preset_name} at: {table_filename}')


if __name__ == '__main__':
    main()
