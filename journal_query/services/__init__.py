"""
Services module for step execution.

Contains the SQL and vector step executors, the fallback ladder, the
embedding client and the AWS Secrets Manager helper. Import from the
submodules directly; config imports aws_secrets while it is still loading.
"""
