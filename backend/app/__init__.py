"""
Work Plan Export Backend Application Package

This package contains the FastAPI backend that turns work plan data into
a finished Word document, including:

- main.py: FastAPI application and router registration
- docx_engine/: rich-text renderer, section builders, template surgery,
  merge and package post-processing
- services/: export orchestration and financial computation
"""
