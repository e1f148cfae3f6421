"""
DynamoDB client with conditional writes, transactions and error handling.
"""
import os
import logging
from typing import Dict, List, Optional, Any

import boto3
from boto3.dynamodb.types import TypeSerializer
from botocore.exceptions import ClientError

from .exceptions import (
    DynamoDBError,
    ConditionalCheckFailedError,
    TransactionConflictError,
)

logger = logging.getLogger(__name__)

# TransactWriteItems accepts at most 100 actions per call
MAX_TRANSACTION_ITEMS = 100

_serializer = TypeSerializer()


class DynamoDBClient:
    """
    DynamoDB client with conditional writes, transactions and error handling.

    Every read-check-write that has to hold across Lambda instances goes
    through a condition expression or ``transact_write_items``.
    """

    def __init__(
        self,
        region: Optional[str] = None,
        endpoint_url: Optional[str] = None
    ):
        """
        Initialize DynamoDB client.

        Args:
            region: AWS region for DynamoDB (defaults to AWS_REGION)
            endpoint_url: Optional endpoint override (DYNAMODB_ENDPOINT_URL),
                e.g. DynamoDB Local
        """
        region = region or os.environ.get('AWS_REGION', 'us-east-1')
        endpoint_url = endpoint_url or os.environ.get('DYNAMODB_ENDPOINT_URL') or None

        self.dynamodb = boto3.resource('dynamodb', region_name=region, endpoint_url=endpoint_url)
        self.client = boto3.client('dynamodb', region_name=region, endpoint_url=endpoint_url)

    def get_table(self, table_name: str):
        """
        Get DynamoDB table resource.

        Args:
            table_name: Name of the table

        Returns:
            DynamoDB table resource
        """
        return self.dynamodb.Table(table_name)

    def get_item(
        self,
        table_name: str,
        key: Dict[str, Any],
        consistent_read: bool = False
    ) -> Optional[Dict[str, Any]]:
        """
        Get item from DynamoDB table.

        Args:
            table_name: Name of the table
            key: Primary key of the item
            consistent_read: Whether to use consistent read

        Returns:
            Item dict or None if not found

        Raises:
            DynamoDBError: On DynamoDB errors
        """
        try:
            table = self.get_table(table_name)
            response = table.get_item(
                Key=key,
                ConsistentRead=consistent_read
            )
            return response.get('Item')
        except ClientError as e:
            logger.error(f"Error getting item from {table_name}: {e}")
            raise DynamoDBError(f"Failed to get item: {e}")

    def put_item(
        self,
        table_name: str,
        item: Dict[str, Any],
        condition_expression: Optional[str] = None,
        expression_attribute_values: Optional[Dict[str, Any]] = None,
        expression_attribute_names: Optional[Dict[str, str]] = None
    ) -> None:
        """
        Put item into DynamoDB table.

        Args:
            table_name: Name of the table
            item: Item to put
            condition_expression: Optional condition expression
            expression_attribute_values: Optional expression attribute values
            expression_attribute_names: Optional expression attribute names

        Raises:
            ConditionalCheckFailedError: If condition check fails
            DynamoDBError: On other DynamoDB errors
        """
        try:
            table = self.get_table(table_name)
            kwargs = {'Item': item}

            if condition_expression:
                kwargs['ConditionExpression'] = condition_expression
            if expression_attribute_values:
                kwargs['ExpressionAttributeValues'] = expression_attribute_values
            if expression_attribute_names:
                kwargs['ExpressionAttributeNames'] = expression_attribute_names

            table.put_item(**kwargs)
        except ClientError as e:
            if e.response['Error']['Code'] == 'ConditionalCheckFailedException':
                raise ConditionalCheckFailedError("Conditional check failed")
            logger.error(f"Error putting item to {table_name}: {e}")
            raise DynamoDBError(f"Failed to put item: {e}")

    def update_item(
        self,
        table_name: str,
        key: Dict[str, Any],
        update_expression: str,
        condition_expression: Optional[str] = None,
        expression_attribute_values: Optional[Dict[str, Any]] = None,
        expression_attribute_names: Optional[Dict[str, str]] = None,
        return_values: str = 'NONE'
    ) -> Optional[Dict[str, Any]]:
        """
        Update item in DynamoDB table.

        Args:
            table_name: Name of the table
            key: Primary key of the item
            update_expression: Update expression
            condition_expression: Optional condition expression
            expression_attribute_values: Optional expression attribute values
            expression_attribute_names: Optional expression attribute names
            return_values: What to return (NONE, ALL_OLD, UPDATED_OLD, ALL_NEW, UPDATED_NEW)

        Returns:
            Updated attributes if return_values is not NONE

        Raises:
            ConditionalCheckFailedError: If condition check fails
            DynamoDBError: On other DynamoDB errors
        """
        try:
            table = self.get_table(table_name)
            kwargs = {
                'Key': key,
                'UpdateExpression': update_expression,
                'ReturnValues': return_values
            }

            if condition_expression:
                kwargs['ConditionExpression'] = condition_expression
            if expression_attribute_values:
                kwargs['ExpressionAttributeValues'] = expression_attribute_values
            if expression_attribute_names:
                kwargs['ExpressionAttributeNames'] = expression_attribute_names

            response = table.update_item(**kwargs)
            return response.get('Attributes')
        except ClientError as e:
            if e.response['Error']['Code'] == 'ConditionalCheckFailedException':
                raise ConditionalCheckFailedError("Conditional check failed")
            logger.error(f"Error updating item in {table_name}: {e}")
            raise DynamoDBError(f"Failed to update item: {e}")

    def delete_item(
        self,
        table_name: str,
        key: Dict[str, Any],
        condition_expression: Optional[str] = None,
        expression_attribute_values: Optional[Dict[str, Any]] = None
    ) -> None:
        """
        Delete item from DynamoDB table.

        Deleting a key that does not exist succeeds.

        Args:
            table_name: Name of the table
            key: Primary key of the item
            condition_expression: Optional condition expression
            expression_attribute_values: Optional expression attribute values

        Raises:
            ConditionalCheckFailedError: If condition check fails
            DynamoDBError: On other DynamoDB errors
        """
        try:
            table = self.get_table(table_name)
            kwargs = {'Key': key}

            if condition_expression:
                kwargs['ConditionExpression'] = condition_expression
            if expression_attribute_values:
                kwargs['ExpressionAttributeValues'] = expression_attribute_values

            table.delete_item(**kwargs)
        except ClientError as e:
            if e.response['Error']['Code'] == 'ConditionalCheckFailedException':
                raise ConditionalCheckFailedError("Conditional check failed")
            logger.error(f"Error deleting item from {table_name}: {e}")
            raise DynamoDBError(f"Failed to delete item: {e}")

    def query(
        self,
        table_name: str,
        key_condition_expression: str,
        expression_attribute_values: Dict[str, Any],
        index_name: Optional[str] = None,
        filter_expression: Optional[str] = None,
        expression_attribute_names: Optional[Dict[str, str]] = None,
        max_items: Optional[int] = None,
        consistent_read: bool = False,
        page_size: Optional[int] = None,
        max_pages: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """
        Query DynamoDB table, following pagination.

        Args:
            table_name: Name of the table
            key_condition_expression: Key condition expression
            expression_attribute_values: Expression attribute values
            index_name: Optional GSI name
            filter_expression: Optional filter expression
            expression_attribute_names: Optional expression attribute names
            max_items: Stop once this many matching items were collected
            consistent_read: Whether to use consistent read (not for GSIs)
            page_size: Items evaluated per request (Limit)
            max_pages: Stop after this many requests

        Returns:
            List of items

        Raises:
            DynamoDBError: On DynamoDB errors
        """
        try:
            table = self.get_table(table_name)
            kwargs = {
                'KeyConditionExpression': key_condition_expression,
                'ExpressionAttributeValues': expression_attribute_values,
                'ConsistentRead': consistent_read
            }

            if index_name:
                kwargs['IndexName'] = index_name
            if filter_expression:
                kwargs['FilterExpression'] = filter_expression
            if expression_attribute_names:
                kwargs['ExpressionAttributeNames'] = expression_attribute_names

            return self._collect_pages(table.query, kwargs, max_items, page_size, max_pages)
        except ClientError as e:
            logger.error(f"Error querying {table_name}: {e}")
            raise DynamoDBError(f"Failed to query table: {e}")

    def scan(
        self,
        table_name: str,
        filter_expression: Optional[str] = None,
        expression_attribute_values: Optional[Dict[str, Any]] = None,
        expression_attribute_names: Optional[Dict[str, str]] = None,
        projection_expression: Optional[str] = None,
        max_items: Optional[int] = None,
        page_size: Optional[int] = None,
        max_pages: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """
        Scan DynamoDB table, following pagination.

        DynamoDB applies Limit before the filter, so the item cap is
        enforced here while collecting pages. ``page_size`` and ``max_pages``
        together bound the number of items read, whatever the filter matches.

        Args:
            table_name: Name of the table
            filter_expression: Optional filter expression
            expression_attribute_values: Optional expression attribute values
            expression_attribute_names: Optional expression attribute names
            projection_expression: Optional projection expression
            max_items: Stop once this many matching items were collected
            page_size: Items evaluated per request (Limit)
            max_pages: Stop after this many requests

        Returns:
            List of items

        Raises:
            DynamoDBError: On DynamoDB errors
        """
        try:
            table = self.get_table(table_name)
            kwargs = {}

            if filter_expression:
                kwargs['FilterExpression'] = filter_expression
            if expression_attribute_values:
                kwargs['ExpressionAttributeValues'] = expression_attribute_values
            if expression_attribute_names:
                kwargs['ExpressionAttributeNames'] = expression_attribute_names
            if projection_expression:
                kwargs['ProjectionExpression'] = projection_expression

            return self._collect_pages(table.scan, kwargs, max_items, page_size, max_pages)
        except ClientError as e:
            logger.error(f"Error scanning {table_name}: {e}")
            raise DynamoDBError(f"Failed to scan table: {e}")

    def _collect_pages(
        self,
        operation,
        kwargs: Dict[str, Any],
        max_items: Optional[int],
        page_size: Optional[int] = None,
        max_pages: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """Run a query/scan operation until exhausted or a budget is reached."""
        items: List[Dict[str, Any]] = []
        pages = 0

        if page_size is not None:
            kwargs['Limit'] = page_size

        while True:
            response = operation(**kwargs)
            pages += 1
            items.extend(response.get('Items', []))

            if max_items is not None and len(items) >= max_items:
                return items[:max_items]

            last_key = response.get('LastEvaluatedKey')
            if not last_key:
                return items
            if max_pages is not None and pages >= max_pages:
                logger.debug(f"Stopped paging after {pages} pages with {len(items)} items")
                return items
            kwargs['ExclusiveStartKey'] = last_key

    def batch_delete(
        self,
        table_name: str,
        keys: List[Dict[str, Any]]
    ) -> None:
        """
        Batch delete items from DynamoDB table.

        Args:
            table_name: Name of the table
            keys: List of primary keys to delete

        Raises:
            DynamoDBError: On DynamoDB errors
        """
        try:
            table = self.get_table(table_name)

            with table.batch_writer() as batch:
                for key in keys:
                    batch.delete_item(Key=key)

        except ClientError as e:
            logger.error(f"Error batch deleting from {table_name}: {e}")
            raise DynamoDBError(f"Failed to batch delete: {e}")

    def transact_write_items(self, transact_items: List[Dict[str, Any]]) -> None:
        """
        Apply several writes atomically (all or nothing).

        Each element is a single-key dict naming the action, e.g.
        ``{'Put': {'TableName': ..., 'Item': {...}, 'ConditionExpression': ...}}``.
        Items, keys and expression values are plain Python values; they are
        serialized to DynamoDB attribute values here.

        Args:
            transact_items: Put / Update / Delete / ConditionCheck actions

        Raises:
            TransactionConflictError: If the transaction was cancelled
            DynamoDBError: On other DynamoDB errors
        """
        if not transact_items:
            return
        if len(transact_items) > MAX_TRANSACTION_ITEMS:
            raise ValueError(
                f"Transaction has {len(transact_items)} actions, "
                f"maximum is {MAX_TRANSACTION_ITEMS}"
            )

        try:
            self.client.transact_write_items(
                TransactItems=[self._serialize_action(action) for action in transact_items]
            )
        except ClientError as e:
            if e.response['Error']['Code'] == 'TransactionCanceledException':
                reasons = [
                    reason.get('Code', 'None')
                    for reason in e.response.get('CancellationReasons', [])
                ]
                logger.info(f"Transaction cancelled: {reasons}")
                raise TransactionConflictError("Transaction cancelled", reasons)
            logger.error(f"Error in transactional write: {e}")
            raise DynamoDBError(f"Failed to write transaction: {e}")

    @staticmethod
    def _serialize_action(action: Dict[str, Any]) -> Dict[str, Any]:
        """Serialize the attribute maps of one transaction action."""
        serialized = {}
        for action_type, params in action.items():
            params = dict(params)
            for field in ('Item', 'Key', 'ExpressionAttributeValues'):
                if field in params:
                    params[field] = {
                        name: _serializer.serialize(value)
                        for name, value in params[field].items()
                    }
            serialized[action_type] = params
        return serialized
