"""Standard exit codes for Vigil CLI.

This module defines standard exit codes used across the Vigil CLI
for consistent error reporting and scripting support.
"""


class ExitCode:
    """Standard exit codes for Vigil CLI.
    
    These codes follow common Unix conventions where possible:
    - 0: Success
    - 1: General error
    - 130: Script terminated by Ctrl+C (SIGINT)
    
    Vigil-specific codes start at 2:
    - 2: Configuration error (unknown job type, invalid schedule, bad config)
    - 3: Handler error (job ran and failed)
    - 4: Job contention (job busy or locked by another runner)
    - 6: Storage error
    - 7: Invalid argument
    - 8: Not found
    """
    
    # Standard success
    SUCCESS = 0
    
    # General errors
    GENERAL_ERROR = 1
    
    # Vigil-specific errors
    CONFIGURATION_ERROR = 2
    HANDLER_ERROR = 3
    JOB_CONTENTION = 4
    STORAGE_ERROR = 6
    INVALID_ARGUMENT = 7
    NOT_FOUND = 8
    
    # Signal-based exits (128 + signal number)
    CANCELLED = 130  # Ctrl+C (SIGINT = 2)
    
    @classmethod
    def get_name(cls, code: int) -> str:
        """Get the name of an exit code.
        
        Args:
            code: The exit code value
            
        Returns:
            Human-readable name for the exit code
        """
        names = {
            cls.SUCCESS: "SUCCESS",
            cls.GENERAL_ERROR: "GENERAL_ERROR",
            cls.CONFIGURATION_ERROR: "CONFIGURATION_ERROR",
            cls.HANDLER_ERROR: "HANDLER_ERROR",
            cls.JOB_CONTENTION: "JOB_CONTENTION",
            cls.STORAGE_ERROR: "STORAGE_ERROR",
            cls.INVALID_ARGUMENT: "INVALID_ARGUMENT",
            cls.NOT_FOUND: "NOT_FOUND",
            cls.CANCELLED: "CANCELLED",
        }
        return names.get(code, f"UNKNOWN({code})")
    
    @classmethod
    def get_description(cls, code: int) -> str:
        """Get the description of an exit code.
        
        Args:
            code: The exit code value
            
        Returns:
            Human-readable description for the exit code
        """
        descriptions = {
            cls.SUCCESS: "Operation completed successfully",
            cls.GENERAL_ERROR: "An unexpected error occurred",
            cls.CONFIGURATION_ERROR: "Configuration error, unknown job type or invalid schedule",
            cls.HANDLER_ERROR: "Job handler reported or raised a failure",
            cls.JOB_CONTENTION: "Job is already running or locked, try later",
            cls.STORAGE_ERROR: "Database or storage operation error",
            cls.INVALID_ARGUMENT: "Invalid command-line argument",
            cls.NOT_FOUND: "Requested resource not found",
            cls.CANCELLED: "Operation cancelled by user",
        }
        return descriptions.get(code, f"Unknown exit code: {code}")
