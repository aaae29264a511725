from hybrid_recall.chunking import chunk_id, chunk_markdown, fast_text_hash, sha256_text


def _long_markdown(lines: int = 120) -> str:
    return "\n".join(f"- note {i}: the user mentioned topic number {i} in passing" for i in range(lines))


def test_short_text_is_one_chunk_covering_all_lines():
    chunks = chunk_markdown("# Profile\nname: Ada\nlikes: tea", "profile.md")

    assert len(chunks) == 1
    assert chunks[0].start_line == 1
    assert chunks[0].end_line == 3
    assert chunks[0].text == "# Profile\nname: Ada\nlikes: tea"
    assert chunks[0].embedding is None


def test_empty_text_produces_no_chunks():
    assert chunk_markdown("", "empty.md") == []


def test_long_text_produces_overlapping_chunks_with_full_coverage():
    text = _long_markdown()
    lines = text.split("\n")

    chunks = chunk_markdown(text, "memory.md", target_chars=1600, overlap_chars=320)

    assert len(chunks) >= 2
    assert chunks[0].start_line == 1
    assert chunks[-1].end_line == len(lines)
    for previous, current in zip(chunks, chunks[1:]):
        assert current.start_line > previous.start_line
        # No gaps between consecutive windows.
        assert current.start_line <= previous.end_line + 1
        overlap = lines[current.start_line - 1 : previous.end_line]
        assert overlap
        assert sum(len(line) + 1 for line in overlap[1:]) < 320
    first, second = chunks[0], chunks[1]
    first_tail = first.text.split("\n")[-(first.end_line - second.start_line + 1):]
    second_head = second.text.split("\n")[: first.end_line - second.start_line + 1]
    assert first_tail == second_head


def test_chunk_text_matches_its_line_range():
    text = _long_markdown(60)
    lines = text.split("\n")

    for chunk in chunk_markdown(text, "memory.md", target_chars=400, overlap_chars=80):
        assert chunk.text == "\n".join(lines[chunk.start_line - 1 : chunk.end_line])
        assert chunk.content_hash == fast_text_hash(chunk.text)


def test_single_oversized_line_still_advances():
    text = "x" * 5000 + "\n" + "y" * 4000 + "\nshort tail"

    chunks = chunk_markdown(text, "big.md", target_chars=1600, overlap_chars=320)

    assert [(c.start_line, c.end_line) for c in chunks] == [(1, 1), (2, 2), (3, 3)]


def test_zero_overlap_starts_next_window_after_previous_end():
    text = "\n".join("line %02d" % i for i in range(10))

    chunks = chunk_markdown(text, "plain.md", target_chars=20, overlap_chars=0)

    for previous, current in zip(chunks, chunks[1:]):
        assert current.start_line == previous.end_line + 1


def test_chunk_ids_are_deterministic_and_path_scoped():
    text = _long_markdown()

    first = chunk_markdown(text, "memory.md", updated_at="2026-01-01T00:00:00+00:00")
    second = chunk_markdown(text, "memory.md", updated_at="2026-02-01T00:00:00+00:00")
    other = chunk_markdown(text, "other.md")

    assert [c.id for c in first] == [c.id for c in second]
    assert len({c.id for c in first}) == len(first)
    assert not {c.id for c in first} & {c.id for c in other}
    assert first[0].id == chunk_id("memory.md", 1, first[0].end_line, first[0].content_hash)


def test_sha256_text_is_hex_digest():
    digest = sha256_text("hello")
    assert digest == "2cf24dba5fb0a30e26e83b2ac5b9e29e1b161e5c1fa7425e73043362938b9824"
