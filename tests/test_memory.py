import pytest

from robTomas.config import current_config
from robTomas.memory import MemoryAlignmentError, dump, initial_memory, read_word, write_word


def test_uninitialized_words_read_zero(default_config):
    memory = initial_memory({0: 5})
    assert read_word(memory, 0, default_config) == 5
    assert read_word(memory, 40, default_config) == 0


def test_write_returns_new_image(default_config):
    memory = initial_memory({0: 5})
    updated = write_word(memory, 8, 37, default_config)
    assert updated == {0: 5, 8: 37}
    assert memory == {0: 5}


def test_misaligned_access_raises(default_config):
    with pytest.raises(MemoryAlignmentError) as excinfo:
        read_word({}, 6, default_config)
    assert excinfo.value.address == 6
    assert excinfo.value.word_size == 4
    with pytest.raises(ValueError):
        write_word({}, 3, 1, default_config)


def test_alignment_can_be_disabled():
    cfg = current_config(enforce_alignment=False)
    assert read_word({6: 2}, 6, cfg) == 2
    assert write_word({}, 3, 1, cfg) == {3: 1}


def test_dump_steps_by_word():
    assert dump({4: 3}, 0, 3, 4) == [(0, 0), (4, 3), (8, 0)]
