"""
OpenSearch client wrapper for vector similarity search.

Two k-NN indices are kept per deployment, partitioned by ``owner_id``:
``<prefix>_memory`` mirrors state documents, journal entries and
conversation summaries; ``<prefix>_conversation`` holds indexed exchanges.
"""

import time
from typing import Any, Dict, Iterable, List, Optional

import boto3
from opensearchpy import OpenSearch, RequestsHttpConnection, helpers
from opensearchpy.exceptions import NotFoundError, OpenSearchException
from requests_aws4auth import AWS4Auth

from .config import OpenSearchConfig
from .logging_config import get_logger

logger = get_logger(__name__)

MEMORY_INDEX = 'memory'
CONVERSATION_INDEX = 'conversation'


class OpenSearchError(Exception):
    """Custom exception for OpenSearch errors."""
    pass


def document_key(owner_id: Optional[str], doc_id: str) -> str:
    """Physical ``_id`` of a document; entity ids only need to be unique per owner."""
    return f'{owner_id}:{doc_id}' if owner_id else doc_id


class OpenSearchClient:
    """OpenSearch client with AWS authentication and error handling."""

    def __init__(self, config: OpenSearchConfig):
        """
        Initialize OpenSearch client.

        Args:
            config: OpenSearchConfig instance with connection parameters
        """
        self.config = config

        auth = None
        if config.aws_auth:
            credentials = boto3.Session().get_credentials()
            auth = AWS4Auth(region=config.region, service='aoss', refreshable_credentials=credentials)

        endpoint = config.endpoint
        if '://' in endpoint:
            # Remove protocol if present
            endpoint = endpoint.split('://', 1)[1]

        self.client = OpenSearch(hosts=[{
            'host': endpoint,
            'port': config.port
        }],
                                 http_auth=auth,
                                 use_ssl=config.use_ssl,
                                 verify_certs=config.use_ssl,
                                 connection_class=RequestsHttpConnection)

        logger.info(f'Initialized OpenSearch client for endpoint: {config.endpoint}')

    def index_name(self, index_type: str) -> str:
        """Resolve the physical index name for an index type."""
        return f'{self.config.index_name}_{index_type}'

    def _mapping(self, index_type: str) -> Dict[str, Any]:
        embedding = {
            'type': 'knn_vector',
            'dimension': self.config.dimension,
            'method': {
                'name': 'hnsw',
                'space_type': 'cosinesimil',
                # Lucene applies knn filters during the graph search, not after it
                'engine': 'lucene',
                'parameters': {
                    'ef_construction': 128,
                    'm': 16
                }
            }
        }
        if index_type == MEMORY_INDEX:
            properties = {
                'id': {'type': 'keyword'},
                'owner_id': {'type': 'keyword'},
                'type': {'type': 'keyword'},
                'name': {'type': 'keyword'},
                'topic': {'type': 'keyword'},
                'content': {'type': 'text'},
                'intent': {'type': 'text'},
                'timestamp': {'type': 'date'},
                'embedding': embedding,
            }
        elif index_type == CONVERSATION_INDEX:
            properties = {
                'id': {'type': 'keyword'},
                'owner_id': {'type': 'keyword'},
                'user_prompt': {'type': 'text'},
                'assistant_summary': {'type': 'text'},
                'project': {'type': 'keyword'},
                'project_path': {'type': 'keyword'},
                'branch': {'type': 'keyword'},
                'timestamp': {'type': 'date'},
                'session_id': {'type': 'keyword'},
                'session_path': {'type': 'keyword'},
                'message_uuid': {'type': 'keyword'},
                'embedding': embedding,
            }
        else:
            raise OpenSearchError(f'Unknown index type: {index_type}')

        return {
            'mappings': {
                'properties': properties
            },
            'settings': {
                'index': {
                    'knn': True
                }
            }
        }

    def create_index_if_not_exists(self, index_type: str = MEMORY_INDEX) -> str:
        """
        Create index if it doesn't exist.

        Args:
            index_type: Type of index (memory or conversation)

        Returns:
            'exists', 'created' or 'failed'
        """
        index_name = self.index_name(index_type)

        try:
            if self.client.indices.exists(index=index_name):
                logger.debug(f'Index {index_name} already exists')
                return 'exists'

            response = self.client.indices.create(index=index_name, body=self._mapping(index_type))
            logger.info(f'Created index {index_name}')
            if response.get('acknowledged', False):
                if self.config.index_sync_wait > 0:
                    logger.info(f'Waiting {self.config.index_sync_wait}s for index {index_name} sync-up...')
                    time.sleep(self.config.index_sync_wait)
                return 'created'
            else:
                return 'failed'
        except OpenSearchException as e:
            logger.error(f'Error creating index {index_name}: {e}')
            raise OpenSearchError(f'Failed to create index: {e}')
        except OpenSearchError:
            raise
        except Exception as e:
            logger.error(f'Unexpected error creating index {index_name}: {e}')
            raise OpenSearchError(f'Unexpected error creating index: {e}')

    def upsert_document(self, doc_id: str, document: Dict[str, Any], index_type: str = MEMORY_INDEX) -> bool:
        """
        Index a document under an explicit id, replacing any previous version.

        Args:
            doc_id: Document id (shared with the source entity)
            document: Document body including its embedding
            index_type: Type of index (memory or conversation)

        Returns:
            True if the document was created or updated
        """
        index_name = self.index_name(index_type)

        try:
            key = document_key(document.get('owner_id'), doc_id)
            response = self.client.index(index=index_name, id=key, body=document)

            success = response.get('result') in ['created', 'updated']
            if success:
                logger.debug(f'Upserted document {doc_id} in {index_name}')
            else:
                logger.warning(f'Unexpected result upserting document {doc_id}: {response}')

            return success

        except OpenSearchException as e:
            logger.error(f'Error upserting document {doc_id}: {e}')
            raise OpenSearchError(f'Failed to upsert document: {e}')
        except Exception as e:
            logger.error(f'Unexpected error upserting document {doc_id}: {e}')
            raise OpenSearchError(f'Unexpected error upserting document: {e}')

    def bulk_upsert(self, documents: Iterable[Dict[str, Any]], index_type: str = CONVERSATION_INDEX) -> int:
        """
        Upsert many documents keyed by their ``id`` field.

        Returns:
            Number of documents written
        """
        index_name = self.index_name(index_type)
        actions = [{
            '_op_type': 'index',
            '_index': index_name,
            '_id': document_key(document.get('owner_id'), document['id']),
            '_source': document
        } for document in documents]

        if not actions:
            return 0

        try:
            success, errors = helpers.bulk(self.client, actions, raise_on_error=False)
            if errors:
                logger.error(f'Bulk upsert into {index_name} had {len(errors)} failures')
                raise OpenSearchError(f'Bulk upsert failed for {len(errors)} documents: {errors[0]}')

            logger.debug(f'Bulk upserted {success} documents into {index_name}')
            return success

        except OpenSearchError:
            raise
        except OpenSearchException as e:
            logger.error(f'Error in bulk upsert: {e}')
            raise OpenSearchError(f'Bulk upsert failed: {e}')
        except Exception as e:
            logger.error(f'Unexpected error in bulk upsert: {e}')
            raise OpenSearchError(f'Unexpected error in bulk upsert: {e}')

    def vector_search(self,
                      query_vector: List[float],
                      owner_id: str,
                      top_k: int = 20,
                      index_type: str = MEMORY_INDEX,
                      filters: Optional[Dict[str, str]] = None) -> List[Dict[str, Any]]:
        """
        Perform vector similarity search.

        Args:
            query_vector: Query vector for similarity search
            owner_id: Owner to filter results
            top_k: Number of results to return (default 20)
            index_type: Type of index (memory or conversation)
            filters: Extra exact-match metadata filters, e.g. ``{'type': 'journal'}``

        Returns:
            List of search results with scores and documents, best first
        """
        index_name = self.index_name(index_type)

        term_filters = [{'term': {'owner_id': owner_id}}]
        for field, value in (filters or {}).items():
            term_filters.append({'term': {field: value}})

        try:
            search_body = {
                'size': top_k,
                'query': {
                    'knn': {
                        'embedding': {
                            'vector': query_vector,
                            'k': top_k,
                            'filter': {
                                'bool': {
                                    'filter': term_filters
                                }
                            }
                        }
                    }
                },
                '_source': {
                    'excludes': ['embedding']  # Don't return embedding in results
                }
            }

            response = self.client.search(index=index_name, body=search_body)

            results = []
            for hit in response['hits']['hits']:
                source = hit['_source']
                result = {'id': source.get('id', hit['_id']), 'score': hit['_score'], 'document': source}
                results.append(result)

            logger.debug(f'Vector search returned {len(results)} results for owner {owner_id}')
            return results

        except OpenSearchException as e:
            logger.error(f'Error performing vector search: {e}')
            raise OpenSearchError(f'Vector search failed: {e}')
        except Exception as e:
            logger.error(f'Unexpected error in vector search: {e}')
            raise OpenSearchError(f'Unexpected error in vector search: {e}')

    def count_documents(self, owner_id: str, index_type: str = CONVERSATION_INDEX) -> int:
        """Count documents belonging to an owner; a missing index counts as empty."""
        index_name = self.index_name(index_type)

        try:
            response = self.client.count(index=index_name, body={'query': {'term': {'owner_id': owner_id}}})
            return int(response.get('count', 0))
        except NotFoundError:
            return 0
        except OpenSearchException as e:
            logger.error(f'Error counting documents in {index_name}: {e}')
            raise OpenSearchError(f'Count failed: {e}')
        except Exception as e:
            logger.error(f'Unexpected error counting documents in {index_name}: {e}')
            raise OpenSearchError(f'Unexpected error counting documents: {e}')

    def health_check(self) -> bool:
        """
        Perform a health check on the OpenSearch service.

        Returns:
            True if service is healthy, False otherwise
        """
        try:
            response = self.client.indices.exists(index=self.index_name(MEMORY_INDEX))

            return response in [True, False]

        except Exception as e:
            logger.error(f'OpenSearch health check failed: {e}')
            return False
