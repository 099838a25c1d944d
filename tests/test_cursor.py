from update_ingest.cursor import CursorTracker


def test_starts_at_initial_value():
    assert CursorTracker().value == 0
    assert CursorTracker(100).value == 100


def test_advance_and_recover_point_past_the_id():
    cursor = CursorTracker()
    assert cursor.advance(12) == 13
    assert cursor.recover(15) == 16
    assert cursor.value == 16


def test_never_moves_backwards():
    cursor = CursorTracker(50)
    cursor.advance(10)
    cursor.recover(3)
    assert cursor.value == 50
