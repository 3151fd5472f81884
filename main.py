import os
import argparse
import logging
import time

import cv2
import numpy as np

from akaze import AKAZE
from akaze_config import AKAZEOptions, DESCRIPTOR_MODES, DIFFUSIVITY_TYPES
from akaze_errors import AKAZEError
import diagnostics

logger = logging.getLogger(__name__)

VALID_EXTENSIONS = ('.jpg', '.jpeg', '.png', '.bmp', '.tif', '.tiff', '.pgm')


def match_descriptors(des1, des2, binary, ratio=0.8):
    """Brute force nearest neighbour matching with Lowe's ratio test
    """
    if des1 is None or des2 is None or len(des1) == 0 or len(des2) < 2:
        return []
    norm = cv2.NORM_HAMMING if binary else cv2.NORM_L2
    matcher = cv2.BFMatcher(norm)
    matches = matcher.knnMatch(des1, des2, k=2)

    good = []
    for pair in matches:
        if len(pair) < 2:
            continue
        m, n = pair
        if m.distance < ratio * n.distance:
            good.append(m)
    return good


class AKAZEBatchApp:
    def __init__(self, options=None):
        self.options = options if options is not None else AKAZEOptions()

    def run_batch(self, image_dir, output_dir=None, params=None):
        """Detect and describe every image of a directory, writing per image results to output_dir
        """
        if params is not None:
            self.options = AKAZEOptions.from_dict(params)
        self.options.validate()

        if output_dir is None:
            output_dir = os.path.join(os.path.dirname(image_dir), os.path.basename(image_dir) + "_results")
        if not os.path.exists(output_dir):
            os.makedirs(output_dir)

        image_files = sorted(f for f in os.listdir(image_dir)
                             if os.path.isfile(os.path.join(image_dir, f)) and f.lower().endswith(VALID_EXTENSIONS))
        if not image_files:
            print(f"No valid image files found in {image_dir}")
            return {}

        results = {}
        for image_file in image_files:
            print(f"Processing {image_file}...")
            image_path = os.path.join(image_dir, image_file)
            image = cv2.imread(image_path, cv2.IMREAD_GRAYSCALE)
            if image is None:
                print(f"Failed to load {image_file}, skipping.")
                continue

            akaze = AKAZE(self.options)
            start_time = time.time()
            try:
                keypoints, descriptors = akaze.detect_and_compute(image)
            except AKAZEError as e:
                print(f"Failed to process {image_file}: {e}, skipping.")
                continue
            elapsed_time = time.time() - start_time

            base_name = os.path.splitext(image_file)[0]
            cv2.imwrite(os.path.join(output_dir, f"{base_name}_akaze.jpg"), diagnostics.draw_keypoints(image, keypoints))
            diagnostics.plot_keypoint_statistics(keypoints, os.path.join(output_dir, f"{base_name}_keypoint_stats.png"))
            if self.options.save_scale_space:
                level_dir = os.path.join(output_dir, f"{base_name}_scale_space")
                diagnostics.save_scale_space(akaze, level_dir)
                diagnostics.save_diffusivity(akaze, level_dir)
                diagnostics.save_detector_responses(akaze, level_dir)

            stats = diagnostics.keypoint_statistics(keypoints)
            results[image_file] = {
                'computation_time': elapsed_time,
                'num_keypoints': len(keypoints),
                'descriptor_shape': descriptors.shape,
                'stage_times': diagnostics.computation_time_report(akaze),
                'metrics': stats,
            }

            with open(os.path.join(output_dir, f"{base_name}_results.txt"), 'w') as f:
                f.write(f"Results for {image_file}\n")
                f.write(f"Computation Time: {elapsed_time:.4f} seconds\n")
                f.write(f"Number of keypoints detected: {len(keypoints)}\n")
                f.write(f"Descriptor: {self.options.descriptor} {descriptors.shape[1]} x {descriptors.dtype}\n")
                f.write(f"Average keypoint size: {stats['size_mean']:.4f}\n")
                f.write(f"Standard deviation of keypoint size: {stats['size_std']:.4f}\n")
                f.write(f"Average response: {stats['response_mean']:.6f}\n")
                f.write(f"Standard deviation of response: {stats['response_std']:.6f}\n")
                for name, ms in results[image_file]['stage_times'].items():
                    f.write(f"Time {name}: {ms:.2f} ms\n")

            print(f"Processed {image_file}: {len(keypoints)} keypoints detected in {elapsed_time:.4f} seconds")

        return results

    def compare_images(self, results):
        """Summary statistics over all processed images
        """
        if not results:
            return {}

        computation_times = []
        num_keypoints = []
        size_means = []
        response_means = []
        for image_name, image_results in results.items():
            computation_times.append(image_results['computation_time'])
            num_keypoints.append(image_results['num_keypoints'])
            size_means.append(image_results['metrics']['size_mean'])
            response_means.append(image_results['metrics']['response_mean'])

        return {
            'avg_computation_time': np.mean(computation_times),
            'std_computation_time': np.std(computation_times),
            'avg_keypoints': np.mean(num_keypoints),
            'std_keypoints': np.std(num_keypoints),
            'avg_size': np.mean(size_means),
            'std_size': np.std(size_means),
            'avg_response': np.mean(response_means),
            'std_response': np.std(response_means)
        }

    def generate_report(self, results, comparison, output_dir):
        report_path = os.path.join(output_dir, "akaze_analysis_report.txt")

        with open(report_path, 'w') as f:
            f.write("AKAZE Feature Extractor Analysis Report\n")
            f.write("=======================================\n\n")

            f.write("Configuration\n")
            f.write("-------------\n")
            f.write(self.options.describe() + "\n\n")

            f.write("Summary Statistics\n")
            f.write("------------------\n")
            f.write(f"Number of images analyzed: {len(results)}\n")
            if comparison:
                f.write(f"Average computation time: {comparison['avg_computation_time']:.4f} seconds\n")
                f.write(f"Standard deviation of computation time: {comparison['std_computation_time']:.4f} seconds\n")
                f.write(f"Average number of keypoints detected: {comparison['avg_keypoints']:.2f}\n")
                f.write(f"Standard deviation of keypoints detected: {comparison['std_keypoints']:.2f}\n")
                f.write(f"Average keypoint size across all images: {comparison['avg_size']:.4f}\n")
                f.write(f"Average response across all images: {comparison['avg_response']:.6f}\n\n")

            f.write("Individual Image Results\n")
            f.write("------------------------\n")
            for image_name, image_results in results.items():
                f.write(f"\nImage: {image_name}\n")
                f.write(f"  Computation time: {image_results['computation_time']:.4f} seconds\n")
                f.write(f"  Number of keypoints detected: {image_results['num_keypoints']}\n")
                f.write(f"  Average keypoint size: {image_results['metrics']['size_mean']:.4f}\n")

        return report_path

    def match_pair(self, image_path1, image_path2, output_dir):
        """Match two images and save the drawn correspondences
        """
        img1 = cv2.imread(image_path1, cv2.IMREAD_GRAYSCALE)
        img2 = cv2.imread(image_path2, cv2.IMREAD_GRAYSCALE)
        if img1 is None or img2 is None:
            raise AKAZEError(f"Unable to load {image_path1} or {image_path2}")

        kp1, des1 = AKAZE(self.options).detect_and_compute(img1)
        kp2, des2 = AKAZE(self.options).detect_and_compute(img2)
        binary = des1.dtype == np.uint8
        good = match_descriptors(des1, des2, binary)
        print(f"{len(good)} matches between {len(kp1)} and {len(kp2)} keypoints")

        if not os.path.exists(output_dir):
            os.makedirs(output_dir)
        result_img = cv2.drawMatches(img1, kp1, img2, kp2, good, None,
                                     flags=cv2.DrawMatchesFlags_NOT_DRAW_SINGLE_POINTS)
        match_path = os.path.join(output_dir, "matches.jpg")
        cv2.imwrite(match_path, result_img)
        return good, match_path


def build_parser():
    parser = argparse.ArgumentParser(description='AKAZE Feature Extractor')
    parser.add_argument('--image_dir', type=str, help='Directory containing images to process')
    parser.add_argument('--output_dir', type=str, help='Directory to save results')
    parser.add_argument('--match', nargs=2, metavar=('IMAGE1', 'IMAGE2'), help='Match two images instead of a batch')
    parser.add_argument('--omax', type=int, default=4, help='Number of octaves')
    parser.add_argument('--nsublevels', type=int, default=4, help='Number of sublevels per octave')
    parser.add_argument('--soffset', type=float, default=1.6, help='Base scale offset in pixels')
    parser.add_argument('--diffusivity', type=str, default='PM_G2', choices=DIFFUSIVITY_TYPES,
                        help='Conductance function of the diffusion')
    parser.add_argument('--dthreshold', type=float, default=0.001, help='Detector response threshold')
    parser.add_argument('--descriptor', type=str, default='MLDB', choices=sorted(DESCRIPTOR_MODES),
                        help='Descriptor mode')
    parser.add_argument('--descriptor_size', type=int, default=0, help='M-LDB descriptor size in bits, 0 for full')
    parser.add_argument('--descriptor_channels', type=int, default=3, choices=(1, 2, 3), help='M-LDB channels')
    parser.add_argument('--save_scale_space', action='store_true', help='Export the evolution levels')
    parser.add_argument('--verbose', action='store_true', help='Log progress and stage timings')
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING,
                        format='%(asctime)s %(name)s %(levelname)s: %(message)s')

    params = {
        'omax': args.omax,
        'nsublevels': args.nsublevels,
        'soffset': args.soffset,
        'diffusivity': args.diffusivity,
        'dthreshold': args.dthreshold,
        'descriptor': args.descriptor,
        'descriptor_size': args.descriptor_size,
        'descriptor_channels': args.descriptor_channels,
        'save_scale_space': args.save_scale_space,
        'verbosity': args.verbose,
    }
    app = AKAZEBatchApp(AKAZEOptions.from_dict(params).validate())

    if args.match:
        output_dir = args.output_dir or os.getcwd()
        good, match_path = app.match_pair(args.match[0], args.match[1], output_dir)
        print(f"Matches saved at: {match_path}")
        return 0

    if not args.image_dir:
        parser.print_usage()
        print("Either --image_dir or --match is required.")
        return 2

    results = app.run_batch(args.image_dir, args.output_dir)
    comparison = app.compare_images(results)
    if args.output_dir:
        report_path = app.generate_report(results, comparison, args.output_dir)
        print(f"Report generated at: {report_path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
