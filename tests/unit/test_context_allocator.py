from __future__ import annotations

from app.jobs.context import ContextAllocator, ParsedDocument, build_rotating_chunks, split_into_units, truncate


def _numbered_sentences(count: int) -> str:
  # Each sentence is exactly 30 words and carries a unique marker.
  return " ".join(f"Marker{index:02d} " + " ".join(["word"] * 28) + " final." for index in range(count))


def test_rotating_chunks_cover_every_sentence_with_distinct_offsets() -> None:
  text = _numbered_sentences(20)
  allocation = ContextAllocator().allocate(instructions="Write quizzes about plants.", item_count=4, documents=[ParsedDocument(original_name="notes.txt", document_type="subject-content", text=text)])

  contexts = allocation.per_item_contexts
  assert len(contexts) == 4
  # Starting offsets rotate by 20 // 4 = 5 sentences.
  for index, start in enumerate((0, 5, 10, 15)):
    focus = contexts[index].split("Subject Content Focus:\n", 1)[1]
    assert focus.startswith(f"Marker{start:02d}")

  covered = {marker for marker in (f"Marker{i:02d}" for i in range(20)) if any(marker in context for context in contexts)}
  assert len(covered) == 20
  # Each context holds a window of the material, never the whole of it.
  assert not any(all(f"Marker{i:02d}" in context for i in range(20)) for context in contexts)


def test_allocation_is_deterministic() -> None:
  documents = [
    ParsedDocument(original_name="syllabus.txt", document_type="syllabus", text="Pupils learn equivalent fractions. Pupils add fractions."),
    ParsedDocument(original_name="content.txt", document_type="subject-content", text=_numbered_sentences(12)),
  ]
  allocator = ContextAllocator()

  first = allocator.allocate(instructions="Focus on fractions.", item_count=3, documents=documents)
  second = allocator.allocate(instructions="Focus on fractions.", item_count=3, documents=documents)

  assert first == second


def test_item_index_maps_to_its_own_context() -> None:
  allocation = ContextAllocator().allocate(instructions="Any instructions", item_count=5)

  for index, context in enumerate(allocation.per_item_contexts):
    assert f"Batch Position: Quiz {index + 1}/5" in context


def test_syllabus_is_repeated_in_every_context() -> None:
  documents = [ParsedDocument(original_name="syllabus.txt", document_type="syllabus", text="Topic one. Topic two.")]
  allocation = ContextAllocator().allocate(instructions="Instructions", item_count=3, documents=documents)

  assert all("Syllabus Constraints:\nTopic one. Topic two." in context for context in allocation.per_item_contexts)
  assert "=== syllabus.txt [Syllabus] ===" in allocation.combined_extracted_text


def test_unknown_document_type_is_treated_as_other() -> None:
  documents = [ParsedDocument(original_name="misc.txt", document_type="slides", text="Extra reading about fractions.")]
  allocation = ContextAllocator().allocate(instructions="Instructions", item_count=1, documents=documents)

  assert "Additional Reference Notes:" in allocation.per_item_contexts[0]
  assert "[Other Reference]" in allocation.combined_extracted_text


def test_question_bank_splits_on_question_boundaries() -> None:
  text = " ".join(f"Question {n} What is {n} plus {n}?" for n in range(1, 10))
  units = split_into_units(text, "question-bank")

  assert len(units) == 9
  assert units[0].startswith("Question 1")


def test_rotating_chunks_without_text_is_empty() -> None:
  assert build_rotating_chunks(["   "], "subject-content", 3, 100) == []


def test_truncate_marks_the_cut() -> None:
  assert truncate("abcdefghij", 6) == "abc..."
  assert truncate("short", 10) == "short"
