import pytest

from crackscan.exceptions import GPSDataError
from crackscan.gps_manager import PerSecondCoordinate, RawFix
from crackscan.track_reconstructor import (
    generate_gps_log,
    is_sentinel,
    parse_gps_log,
    reconstruct_track,
)


class TestReconstructTrack:

    def test_one_entry_per_second_starting_at_one(self):
        track = reconstruct_track([RawFix(2, 41.0, 29.0, 5.0)], 6)
        assert [c.second for c in track] == [1, 2, 3, 4, 5, 6]

    def test_single_fix_fills_every_second(self):
        track = reconstruct_track([RawFix(3, 41.0, 29.0, 8.0)], 5)
        assert all((c.latitude, c.longitude, c.accuracy) == (41.0, 29.0, 8.0) for c in track)

    def test_linear_interpolation_between_fixes(self):
        fixes = [RawFix(1, 1.0, 2.0, 4.0), RawFix(3, 3.0, 6.0, 10.0)]
        track = reconstruct_track(fixes, 3)

        middle = track[1]
        assert middle.second == 2
        assert middle.latitude == pytest.approx(2.0)
        assert middle.longitude == pytest.approx(4.0)
        assert middle.accuracy == 10.0

    def test_interpolates_from_initial_fix_at_second_zero(self):
        fixes = [RawFix(0, 0.0, 0.0), RawFix(4, 4.0, 8.0)]
        track = reconstruct_track(fixes, 4)
        assert track[0].latitude == pytest.approx(1.0)
        assert track[0].longitude == pytest.approx(2.0)
        assert track[3] == PerSecondCoordinate(4, 4.0, 8.0, 0.0)

    def test_edges_are_filled_from_nearest_fix(self):
        fixes = [RawFix(3, 10.0, 20.0, 2.0), RawFix(4, 11.0, 21.0, 3.0)]
        track = reconstruct_track(fixes, 6)
        assert (track[0].latitude, track[1].latitude) == (10.0, 10.0)
        assert (track[4].latitude, track[5].latitude) == (11.0, 11.0)
        assert track[5].accuracy == 3.0

    def test_empty_fixes_give_zero_sentinel_rows(self):
        track = reconstruct_track([], 3)
        assert track == [PerSecondCoordinate(s, 0.0, 0.0, 0.0) for s in (1, 2, 3)]
        assert all(is_sentinel(c) for c in track)

    def test_duration_below_one_is_coerced(self):
        assert len(reconstruct_track([RawFix(0, 1.0, 1.0)], 0)) == 1
        assert len(reconstruct_track([], -4)) == 1

    def test_input_order_does_not_matter(self):
        fixes = [RawFix(5, 5.0, 5.0), RawFix(1, 1.0, 1.0), RawFix(3, 3.0, 3.0)]
        assert reconstruct_track(fixes, 6) == reconstruct_track(sorted(fixes, key=lambda f: f.second), 6)

    def test_input_is_not_modified(self):
        fixes = [RawFix(4, 4.0, 4.0), RawFix(1, 1.0, 1.0)]
        reconstruct_track(fixes, 5)
        assert fixes == [RawFix(4, 4.0, 4.0), RawFix(1, 1.0, 1.0)]

    def test_first_fix_wins_for_duplicate_seconds(self):
        fixes = [RawFix(2, 1.0, 1.0), RawFix(2, 9.0, 9.0)]
        track = reconstruct_track(fixes, 2)
        assert track[1].latitude == 1.0

    def test_missing_accuracy_is_zero(self):
        track = reconstruct_track([RawFix(1, 1.0, 1.0)], 1)
        assert track[0].accuracy == 0.0


class TestGpsLog:

    def test_generate_format(self):
        track = [
            PerSecondCoordinate(1, 41.0085, 28.9784, 5.0),
            PerSecondCoordinate(2, 41.00855, 28.97845, 7.5),
        ]
        assert generate_gps_log(track) == (
            "second,latitude,longitude,accuracy\n"
            "1,41.0085,28.9784,5\n"
            "2,41.00855,28.97845,7.5\n"
        )

    def test_generate_never_uses_scientific_notation(self):
        content = generate_gps_log([PerSecondCoordinate(1, 0.00001, -0.00002, 0.0)])
        assert "e" not in content.splitlines()[1]
        assert content.splitlines()[1] == "1,0.00001,-0.00002,0"

    def test_parse_reads_generated_log(self):
        track = reconstruct_track([RawFix(1, 41.5, 29.25, 3.0), RawFix(3, 42.5, 30.25, 6.0)], 3)
        assert parse_gps_log(generate_gps_log(track)) == track

    def test_parse_accepts_bytes_and_blank_lines(self):
        content = b"second,latitude,longitude,accuracy\n\n1,41.0,29.0,4\n\n"
        assert parse_gps_log(content) == [PerSecondCoordinate(1, 41.0, 29.0, 4.0)]

    def test_parse_drops_sentinel_rows_by_default(self):
        content = generate_gps_log(reconstruct_track([], 3))
        assert parse_gps_log(content) == []
        assert len(parse_gps_log(content, drop_sentinel=False)) == 3

    def test_parse_skips_short_rows(self):
        content = "second,latitude,longitude,accuracy\n1,41.0\n2,41.0,29.0,1\n"
        assert [c.second for c in parse_gps_log(content)] == [2]

    def test_parse_rejects_non_numeric_values(self):
        with pytest.raises(GPSDataError):
            parse_gps_log("second,latitude,longitude,accuracy\n1,north,29.0,1\n")

    def test_parse_header_only(self):
        assert parse_gps_log("second,latitude,longitude,accuracy\n") == []
