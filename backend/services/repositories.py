"""Supabase persistence for ingested lecture chunks, exam questions and assignment items."""
import logging
from typing import Any, Dict, List, Optional

from supabase import create_client, Client

from config import SUPABASE_URL, SUPABASE_KEY
from models.chunk import ExistingRecord

logger = logging.getLogger(__name__)


class RepositoryError(RuntimeError):
    """Raised when a Supabase read or write fails."""


class SupabaseItemRepository:
    """
    Item table scoped by a parent document row.

    Subclasses name the item table, the foreign key column pointing at the
    parent and the parent table that holds document-level metadata.
    """

    table_name: str = ""
    parent_column: str = ""
    document_table: str = ""
    existing_columns: str = "id, content, metadata, embedding"
    has_order: bool = False

    def __init__(
        self,
        supabase_url: Optional[str] = SUPABASE_URL,
        supabase_key: Optional[str] = SUPABASE_KEY
    ):
        """
        Initialize the repository with a Supabase client.

        Raises:
            ValueError: If Supabase credentials are missing
        """
        if not supabase_url or not supabase_key:
            raise ValueError("SUPABASE_URL and SUPABASE_KEY environment variables are required")

        self.client: Client = create_client(supabase_url, supabase_key)
        logger.info(f"Initialized {type(self).__name__} with table: {self.table_name}")

    def find_existing_with_embeddings(self, parent_id: str) -> List[ExistingRecord]:
        """
        Fetch every stored item of a parent together with its embedding.

        Raises:
            RepositoryError: If the query fails
        """
        try:
            response = (
                self.client.table(self.table_name)
                .select(self.existing_columns)
                .eq(self.parent_column, parent_id)
                .execute()
            )
        except Exception as e:
            error_msg = f"Failed to fetch existing items from {self.table_name}: {str(e)}"
            logger.error(error_msg)
            raise RepositoryError(error_msg) from e

        records = [self._to_record(row) for row in response.data or []]
        logger.debug(f"Fetched {len(records)} existing items for {parent_id}")
        return records

    def find_by_parent_id(self, parent_id: str) -> List[ExistingRecord]:
        """
        Fetch the stored items of a parent without embeddings, in order.

        Raises:
            RepositoryError: If the query fails
        """
        columns = "id, content, metadata, order_num" if self.has_order else "id, content, metadata"
        try:
            query = self.client.table(self.table_name).select(columns).eq(self.parent_column, parent_id)
            if self.has_order:
                query = query.order("order_num")
            response = query.execute()
        except Exception as e:
            error_msg = f"Failed to fetch items from {self.table_name}: {str(e)}"
            logger.error(error_msg)
            raise RepositoryError(error_msg) from e

        return [self._to_record(row) for row in response.data or []]

    def max_order_num(self, parent_id: str) -> int:
        """Highest stored order number of a parent, 0 when it has no items."""
        orders = [r.order_num for r in self.find_by_parent_id(parent_id) if r.order_num is not None]
        return max(orders) if orders else 0

    def insert_batch(self, rows: List[Dict[str, Any]]) -> List[str]:
        """
        Insert rows and return their ids in input order.

        Raises:
            ValueError: If rows is empty
            RepositoryError: If the insert fails or returns a different row count
        """
        if not rows:
            raise ValueError("Rows list cannot be empty")

        try:
            response = self.client.table(self.table_name).insert(rows).execute()
        except Exception as e:
            error_msg = f"Failed to insert into {self.table_name}: {str(e)}"
            logger.error(error_msg)
            raise RepositoryError(error_msg) from e

        data = response.data or []
        if len(data) != len(rows):
            raise RepositoryError(
                f"Insert into {self.table_name} returned {len(data)} rows for {len(rows)} inserted"
            )

        ids = [str(row["id"]) for row in data]
        logger.info(f"Inserted {len(ids)} rows into {self.table_name}")
        return ids

    def get_document_metadata(self, parent_id: str) -> Dict[str, Any]:
        """
        Read the metadata object of the parent document.

        Raises:
            RepositoryError: If the query fails
        """
        try:
            response = (
                self.client.table(self.document_table)
                .select("metadata")
                .eq("id", parent_id)
                .execute()
            )
        except Exception as e:
            error_msg = f"Failed to read metadata from {self.document_table}: {str(e)}"
            logger.error(error_msg)
            raise RepositoryError(error_msg) from e

        rows = response.data or []
        metadata = rows[0].get("metadata") if rows else None
        return dict(metadata) if isinstance(metadata, dict) else {}

    def update_document_metadata(self, parent_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        """
        Merge ``patch`` into the parent document's metadata.

        The read-merge-write is not atomic; concurrent writers may overwrite
        each other's keys.

        Returns:
            The metadata that was written
        """
        merged = {**self.get_document_metadata(parent_id), **patch}
        self.update_document(parent_id, {"metadata": merged})
        return merged

    def save_outline(self, parent_id: str, outline: Dict[str, Any]) -> None:
        """Store a generated outline on the parent document."""
        self.update_document(parent_id, {"outline": outline})

    def update_document(self, parent_id: str, fields: Dict[str, Any]) -> None:
        """
        Update columns of the parent document row.

        Raises:
            RepositoryError: If the update fails
        """
        try:
            self.client.table(self.document_table).update(fields).eq("id", parent_id).execute()
        except Exception as e:
            error_msg = f"Failed to update {self.document_table} {parent_id}: {str(e)}"
            logger.error(error_msg)
            raise RepositoryError(error_msg) from e

    @staticmethod
    def _to_record(row: Dict[str, Any]) -> ExistingRecord:
        metadata = row.get("metadata")
        return ExistingRecord(
            id=str(row["id"]),
            content=row.get("content") or "",
            metadata=metadata if isinstance(metadata, dict) else {},
            embedding=row.get("embedding"),
            order_num=row.get("order_num"),
        )


class LectureChunkRepository(SupabaseItemRepository):
    """Knowledge point chunks of a lecture document."""
    table_name = "lecture_chunks"
    parent_column = "lecture_document_id"
    document_table = "lecture_documents"


class ExamQuestionRepository(SupabaseItemRepository):
    """Questions of an exam paper."""
    table_name = "exam_questions"
    parent_column = "paper_id"
    document_table = "exam_papers"
    existing_columns = "id, content, metadata, embedding, order_num"
    has_order = True

    def update_question_types(self, paper_id: str, question_types: List[str]) -> None:
        self.update_document(paper_id, {"question_types": question_types})


class AssignmentItemRepository(SupabaseItemRepository):
    """Items of an assignment; sub-questions reference their parent through parent_item_id."""
    table_name = "assignment_items"
    parent_column = "assignment_id"
    document_table = "assignments"
    existing_columns = "id, content, metadata, embedding, order_num"
    has_order = True
