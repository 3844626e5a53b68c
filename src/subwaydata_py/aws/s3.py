import os
from typing import Dict, List, Optional, Tuple

import boto3
from botocore.exceptions import ClientError

from subwaydata_py.runtime_utils.process_logger import ProcessLogger


def get_s3_client() -> boto3.client:
    """Thin function needed for stubbing tests"""
    return boto3.client("s3")


def split_object_path(object_path: str) -> Tuple[str, str]:
    """
    split 's3://my_bucket/the/key' or 'my_bucket/the/key' into bucket and key
    """
    object_path = object_path.replace("s3://", "")
    bucket, key = object_path.split("/", 1)
    return bucket, key


def upload_bytes(body: bytes, object_path: str, extra_args: Optional[Dict] = None) -> None:
    """
    Upload an in memory object to an S3 Bucket

    :param body: object contents
    :param object_path: S3 object path to upload to (including bucket)
    :param extra_args: additional put_object arguments, e.g. Metadata or ContentType

    raises on failure, after logging it
    """
    upload_log = ProcessLogger("s3_upload_bytes", object_path=object_path, size_bytes=len(body))
    upload_log.log_start()

    try:
        bucket, key = split_object_path(object_path)
        s3_client = get_s3_client()
        s3_client.put_object(Bucket=bucket, Key=key, Body=body, **(extra_args or {}))
    except Exception as exception:
        upload_log.log_failure(exception=exception)
        raise exception

    upload_log.log_complete()


def download_bytes(object_path: str) -> bytes:
    """
    Download an S3 object into memory

    :param object_path: S3 object path to download from (including bucket)

    raises on failure, after logging it
    """
    download_log = ProcessLogger("s3_download_bytes", object_path=object_path)
    download_log.log_start()

    try:
        bucket, key = split_object_path(object_path)
        s3_client = get_s3_client()
        response = s3_client.get_object(Bucket=bucket, Key=key)
        body = response["Body"].read()
    except Exception as exception:
        download_log.log_failure(exception=exception)
        raise exception

    download_log.add_metadata(size_bytes=len(body), print_log=False)
    download_log.log_complete()
    return body


def delete_object(del_obj: str) -> None:
    """
    delete s3 object. deleting an object that does not exist succeeds.

    :param del_obj - expected as 's3://my_bucket/object' or 'my_bucket/object'

    raises on failure, after logging it
    """
    process_logger = ProcessLogger("delete_s3_object", del_obj=del_obj)
    process_logger.log_start()

    try:
        bucket, key = split_object_path(del_obj)
        s3_client = get_s3_client()
        s3_client.delete_object(Bucket=bucket, Key=key)
    except Exception as exception:
        process_logger.log_failure(exception)
        raise exception

    process_logger.log_complete()


def object_exists(obj: str) -> bool:
    """
    check if an s3 object exists

    :param obj - expected as 's3://my_bucket/object' or 'my_bucket/object'

    :return: True if the object exists, False if s3 reports it missing. any
        other error is raised.
    """
    bucket, key = split_object_path(obj)
    s3_client = get_s3_client()
    try:
        s3_client.head_object(Bucket=bucket, Key=key)
    except ClientError as exception:
        if exception.response.get("Error", {}).get("Code") in ("404", "NoSuchKey", "NotFound"):
            return False
        raise exception
    return True


def file_list_from_s3(bucket_name: str, file_prefix: str, max_list_size: int = 250_000) -> List[str]:
    """
    get a list of s3 objects

    :param bucket_name: the name of the bucket to look inside of
    :param file_prefix: prefix filter for object keys

    :return List[
        object path as s3://bucket-name/object-key
    ]

    raises on failure, after logging it
    """
    process_logger = ProcessLogger("file_list_from_s3", bucket_name=bucket_name, file_prefix=file_prefix)
    process_logger.log_start()

    try:
        s3_client = get_s3_client()
        paginator = s3_client.get_paginator("list_objects_v2")
        pages = paginator.paginate(Bucket=bucket_name, Prefix=file_prefix)

        filepaths = []
        for page in pages:
            if page["KeyCount"] == 0:
                continue
            for obj in page["Contents"]:
                if obj["Size"] == 0:
                    continue
                filepaths.append(os.path.join("s3://", bucket_name, obj["Key"]))

            if len(filepaths) > max_list_size:
                break
    except Exception as exception:
        process_logger.log_failure(exception)
        raise exception

    process_logger.add_metadata(list_size=len(filepaths))
    process_logger.log_complete()
    return filepaths
